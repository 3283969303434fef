from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool

from spendwise.db.pool import Database, get_db
from spendwise.models.requests import GoogleAuthRequest, LoginRequest, RefreshTokenRequest
from spendwise.services.auth import (
    authenticate,
    enforce_login_rate_limit,
    enforce_signup_rate_limit,
    google_login,
    signup_user,
)
from spendwise.services.photos import prepare_photo, remove_photo_by_url, store_photo
from spendwise.services.tokens import rotate_access_token

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", status_code=201)
async def signup(
    req: Request,
    first_name: str | None = Form(None),
    last_name: str | None = Form(None),
    email: str | None = Form(None),
    phone_number: str | None = Form(None),
    password: str | None = Form(None),
    profile_photo: UploadFile | None = File(None),
    db: Database = Depends(get_db),
):
    enforce_signup_rate_limit(req)
    photo = None
    if profile_photo is not None and profile_photo.filename:
        photo = prepare_photo(await profile_photo.read())

    data = {
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "phone_number": phone_number,
        "password": password,
    }
    photo_url = await run_in_threadpool(store_photo, photo) if photo else None
    try:
        user = await run_in_threadpool(db.run, signup_user, data, photo_url)
    except Exception:
        await run_in_threadpool(remove_photo_by_url, photo_url)
        raise
    return {"message": "User registered successfully", "user": user}


@router.post("/login")
def login(req: Request, payload: LoginRequest, db: Database = Depends(get_db)):
    enforce_login_rate_limit(req, payload.email.strip())
    return db.run(authenticate, payload.email, payload.password)


@router.post("/refresh-token")
def refresh_token(payload: RefreshTokenRequest, db: Database = Depends(get_db)):
    token = db.run(rotate_access_token, payload.refresh_token or "")
    return {"token": token}


@router.post("/google")
def google_auth(payload: GoogleAuthRequest, db: Database = Depends(get_db)):
    return db.run(google_login, payload.model_dump())
