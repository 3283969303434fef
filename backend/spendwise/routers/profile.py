from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from spendwise.db.pool import Database, get_db
from spendwise.models.requests import BalanceAddRequest
from spendwise.services.ledger import adjust_balance, delete_income_transaction
from spendwise.services.photos import prepare_photo, remove_photo_by_url, store_photo
from spendwise.services.profile import (
    get_balance,
    get_profile,
    list_all_transactions,
    list_income_transactions,
    update_profile,
)
from spendwise.services.reports import invalidate_user_reports
from spendwise.services.tokens import require_user_id

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("")
def read_profile(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return db.run(get_profile, user_id)


@router.put("")
async def edit_profile(
    req: Request,
    first_name: str | None = Form(None),
    last_name: str | None = Form(None),
    phone_number: str | None = Form(None),
    email: str | None = Form(None),
    profile_photo: UploadFile | None = File(None),
    db: Database = Depends(get_db),
):
    user_id = require_user_id(req)
    photo = None
    if profile_photo is not None and profile_photo.filename:
        photo = prepare_photo(await profile_photo.read())

    data = {"first_name": first_name, "last_name": last_name, "phone_number": phone_number, "email": email}
    photo_url = await run_in_threadpool(store_photo, photo) if photo else None
    try:
        user, previous_photo = await run_in_threadpool(db.run, update_profile, user_id, data, photo_url)
    except Exception:
        await run_in_threadpool(remove_photo_by_url, photo_url)
        raise
    await run_in_threadpool(remove_photo_by_url, previous_photo)
    return {"message": "Profile updated successfully", "user": user}


@router.get("/all-transactions")
def all_transactions(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return {"allTransactions": db.run(list_all_transactions, user_id)}


@router.get("/balance")
def balance(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return db.run(get_balance, user_id)


@router.post("/balance/add")
def add_balance(req: Request, payload: BalanceAddRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    new_balance = db.run(adjust_balance, user_id, payload.amount)
    invalidate_user_reports(user_id)
    return {"newBalance": float(new_balance)}


@router.get("/income-transactions")
def income_transactions(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return {"incomeTransactions": db.run(list_income_transactions, user_id)}


@router.delete("/income-transactions/delete/{item_id}")
def delete_income(item_id: int, req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    new_balance = db.run(delete_income_transaction, user_id, item_id)
    invalidate_user_reports(user_id)
    return {"message": "Deposit entry deleted successfully.", "newBalance": float(new_balance)}
