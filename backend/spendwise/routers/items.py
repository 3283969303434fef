from fastapi import APIRouter, Depends, Query, Request, Response

from spendwise.core.errors import ValidationError
from spendwise.db.pool import Database, get_db
from spendwise.models.requests import (
    CategoryCreateRequest,
    CategoryTargetRequest,
    ItemCreateRequest,
    ItemUpdateRequest,
)
from spendwise.services.categories import (
    create_category,
    get_category_target,
    list_custom_categories,
    update_category_target,
)
from spendwise.services.ledger import (
    create_item,
    delete_category_cascade,
    delete_item,
    update_item_with_target_propagation,
)
from spendwise.services.reports import (
    category_summary,
    daily_summary,
    invalidate_user_reports,
    list_items,
    monthly_summary,
    parse_day,
    period_summary,
    total_by_category,
    weekly_summary,
)
from spendwise.services.tokens import require_user_id

router = APIRouter(prefix="/items", tags=["items"])


@router.get("")
def read_items(
    req: Request,
    response: Response,
    category: str | None = None,
    from_date: str | None = Query(None, alias="fromDate"),
    to_date: str | None = Query(None, alias="toDate"),
    page: int | None = Query(None, alias="_page"),
    limit: int | None = Query(None, alias="_limit"),
    db: Database = Depends(get_db),
):
    """
    filters:
      - category (``All`` or absent means every section)
      - fromDate/toDate in YYYY-MM-DD, both inclusive
    paging:
      - _page (default 1), _limit (default 10, max 100); out-of-range values are normalized
    the unpaginated total is returned in the X-Total-Count header
    """
    user_id = require_user_id(req)
    rows, total = db.run(list_items, user_id, category, from_date, to_date, page, limit)
    response.headers["X-Total-Count"] = str(total)
    return rows


@router.post("", status_code=201)
def add_item(req: Request, payload: ItemCreateRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    item_id = db.run(create_item, user_id, payload.model_dump())
    invalidate_user_reports(user_id)
    return {"message": "Expense added successfully!", "expenseId": item_id}


@router.get("/summary")
def summary(
    req: Request,
    category: str | None = None,
    from_date: str | None = Query(None, alias="fromDate"),
    to_date: str | None = Query(None, alias="toDate"),
    period: str | None = None,
    db: Database = Depends(get_db),
):
    user_id = require_user_id(req)
    return db.run(period_summary, user_id, category, from_date, to_date, period)


@router.get("/category-summary")
def summary_by_category(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return db.run(category_summary, user_id)


@router.get("/summary/monthly")
def summary_monthly(
    req: Request,
    months: int = Query(6, ge=1, le=60),
    anchor: str | None = None,
    db: Database = Depends(get_db),
):
    user_id = require_user_id(req)
    return db.run(monthly_summary, user_id, months, parse_day(anchor, "anchor"))


@router.get("/summary/weekly")
def summary_weekly(
    req: Request,
    weeks: int = Query(4, ge=1, le=104),
    anchor: str | None = None,
    db: Database = Depends(get_db),
):
    user_id = require_user_id(req)
    return db.run(weekly_summary, user_id, weeks, parse_day(anchor, "anchor"))


@router.get("/summary/daily")
def summary_daily(
    req: Request,
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    db: Database = Depends(get_db),
):
    user_id = require_user_id(req)
    return db.run(daily_summary, user_id, start_date, end_date)


@router.get("/total-by-category")
def category_total(req: Request, category: str | None = None, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return db.run(total_by_category, user_id, category or "")


@router.get("/custom-categories")
def custom_categories(req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    return db.run(list_custom_categories, user_id)


@router.post("/custom-categories", status_code=201)
def add_custom_category(req: Request, payload: CategoryCreateRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    if not payload.iconName or not payload.iconColor:
        raise ValidationError("Missing required fields.")
    category_id = db.run(create_category, user_id, payload.model_dump())
    return {"message": "Custom category added successfully!", "categoryId": category_id}


@router.post("/add-category", status_code=201)
def add_category(req: Request, payload: CategoryCreateRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    if not payload.iconLibrary:
        raise ValidationError("Category label is required.")
    category_id = db.run(create_category, user_id, payload.model_dump())
    return {"message": "Category added successfully!", "categoryId": category_id}


@router.delete("/custom-categories/{category_id}")
def remove_custom_category(category_id: int, req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    label, deleted = db.run(delete_category_cascade, user_id, category_id)
    invalidate_user_reports(user_id)
    return {
        "message": f'Custom category "{label}" and {deleted} associated transactions deleted successfully.',
        "deletedTransactionsCount": deleted,
    }


@router.get("/category-target")
def category_target(req: Request, category: str | None = None, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    if not category:
        raise ValidationError("Category is required.")
    return {"target": float(db.run(get_category_target, user_id, category))}


@router.put("/update-category-target")
def set_category_target(req: Request, payload: CategoryTargetRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    origin, refreshed = db.run(update_category_target, user_id, payload.category, payload.target)
    invalidate_user_reports(user_id)
    return {"message": "Target updated successfully!", "origin": origin, "updatedItems": refreshed}


@router.put("/{item_id}")
def edit_item(item_id: int, req: Request, payload: ItemUpdateRequest, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    result = db.run(update_item_with_target_propagation, user_id, item_id, payload.model_dump())
    invalidate_user_reports(user_id)
    return {"message": "Items updated successfully", **result}


@router.delete("/{item_id}")
def remove_item(item_id: int, req: Request, db: Database = Depends(get_db)):
    user_id = require_user_id(req)
    db.run(delete_item, user_id, item_id)
    invalidate_user_reports(user_id)
    return {"message": "Item deleted successfully"}
