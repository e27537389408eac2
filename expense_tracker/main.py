import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from expense_tracker.config import Settings
from expense_tracker.database import Database, DatabaseAdapter
from expense_tracker.records import (
    CategoryStore,
    DuplicateRecord,
    ExpenseStore,
    RecordInUse,
    RecordNotFound,
    SubcategoryStore,
)
from expense_tracker.summary import build_monthly_summary

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

database = Database(settings)
app = FastAPI(title="Expense Tracker API")


@app.middleware("http")
async def handle_request(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    if request.method == "OPTIONS":
        return Response(status_code=200)
    try:
        return await call_next(request)
    except Exception as exc:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"detail": "Internal server error"}
        if not settings.is_production:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)


app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.on_event("shutdown")
def close_db() -> None:
    database.close()


def get_adapter() -> DatabaseAdapter:
    return database.adapter


# Decimal in Python, number in JSON.
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ExpensePayload(BaseModel):
    amount: Decimal
    currency: str
    category: str
    subcategory: str
    owner: str
    date: str
    description: str | None = None
    category_id: int | None = None
    subcategory_id: int | None = None


class ExpenseUpdatePayload(BaseModel):
    amount: Decimal | None = None
    currency: str | None = None
    category: str | None = None
    subcategory: str | None = None
    owner: str | None = None
    date: str | None = None
    description: str | None = None
    category_id: int | None = None
    subcategory_id: int | None = None


class ExpenseResponse(BaseModel):
    id: int
    amount: Amount
    currency: str
    category: str
    category_id: int | None = None
    subcategory: str
    subcategory_id: int | None = None
    owner: str
    description: str | None = None
    date: str


class CategoryPayload(BaseModel):
    name: str | None = None
    icon: str | None = None
    display_order: int | None = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    icon: str | None = None
    display_order: int
    created_at: datetime | None = None


class SubcategoryPayload(BaseModel):
    category_id: int | None = None
    name: str | None = None
    display_order: int | None = None


class SubcategoryResponse(BaseModel):
    id: int
    category_id: int
    name: str
    display_order: int
    created_at: datetime | None = None
    category_name: str | None = None


class CurrencyTotals(BaseModel):
    PEN: Amount
    USD: Amount


class SummaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_pen: Amount = Field(alias="totalPEN")
    total_usd: Amount = Field(alias="totalUSD")
    by_category: dict[str, CurrencyTotals] = Field(alias="byCategory")
    by_subcategory: dict[str, CurrencyTotals] = Field(alias="bySubcategory")
    by_owner: dict[str, CurrencyTotals] = Field(alias="byOwner")


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    environment: str


class MessageResponse(BaseModel):
    message: str


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=settings.environment,
    )


@router.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    category: str | None = None,
    subcategory: str | None = None,
    owner: str | None = None,
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> list[ExpenseResponse]:
    rows = ExpenseStore(adapter).list(category=category, subcategory=subcategory, owner=owner)
    return [ExpenseResponse.model_validate(row) for row in rows]


@router.post("/expenses", response_model=ExpenseResponse, status_code=201)
def create_expense(
    payload: ExpensePayload, adapter: DatabaseAdapter = Depends(get_adapter)
) -> ExpenseResponse:
    try:
        row = ExpenseStore(adapter).create(payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseResponse.model_validate(row)


@router.put("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdatePayload,
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> ExpenseResponse:
    try:
        row = ExpenseStore(adapter).update(expense_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ExpenseResponse.model_validate(row)


@router.delete("/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, adapter: DatabaseAdapter = Depends(get_adapter)) -> Response:
    try:
        ExpenseStore(adapter).delete(expense_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(adapter: DatabaseAdapter = Depends(get_adapter)) -> list[CategoryResponse]:
    return [CategoryResponse.model_validate(row) for row in CategoryStore(adapter).list()]


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryPayload, adapter: DatabaseAdapter = Depends(get_adapter)
) -> CategoryResponse:
    try:
        row = CategoryStore(adapter).create(payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DuplicateRecord as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return CategoryResponse.model_validate(row)


@router.put("/categories", response_model=CategoryResponse)
def update_category(
    payload: CategoryPayload,
    category_id: int | None = Query(None, alias="id"),
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> CategoryResponse:
    if category_id is None:
        raise HTTPException(status_code=400, detail="Category ID is required.")
    try:
        row = CategoryStore(adapter).update(category_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DuplicateRecord as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return CategoryResponse.model_validate(row)


@router.delete("/categories", response_model=MessageResponse)
def delete_category(
    category_id: int | None = Query(None, alias="id"),
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> MessageResponse:
    if category_id is None:
        raise HTTPException(status_code=400, detail="Category ID is required.")
    try:
        CategoryStore(adapter).delete(category_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordInUse as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MessageResponse(message="Category deleted successfully")


@router.get("/subcategories", response_model=list[SubcategoryResponse])
def list_subcategories(
    category_id: int | None = None, adapter: DatabaseAdapter = Depends(get_adapter)
) -> list[SubcategoryResponse]:
    rows = SubcategoryStore(adapter).list(category_id=category_id)
    return [SubcategoryResponse.model_validate(row) for row in rows]


@router.post("/subcategories", response_model=SubcategoryResponse, status_code=201)
def create_subcategory(
    payload: SubcategoryPayload, adapter: DatabaseAdapter = Depends(get_adapter)
) -> SubcategoryResponse:
    try:
        row = SubcategoryStore(adapter).create(payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DuplicateRecord as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return SubcategoryResponse.model_validate(row)


@router.put("/subcategories", response_model=SubcategoryResponse)
def update_subcategory(
    payload: SubcategoryPayload,
    subcategory_id: int | None = Query(None, alias="id"),
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> SubcategoryResponse:
    if subcategory_id is None:
        raise HTTPException(status_code=400, detail="Subcategory ID is required.")
    try:
        row = SubcategoryStore(adapter).update(
            subcategory_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DuplicateRecord as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return SubcategoryResponse.model_validate(row)


@router.delete("/subcategories", response_model=MessageResponse)
def delete_subcategory(
    subcategory_id: int | None = Query(None, alias="id"),
    adapter: DatabaseAdapter = Depends(get_adapter),
) -> MessageResponse:
    if subcategory_id is None:
        raise HTTPException(status_code=400, detail="Subcategory ID is required.")
    try:
        SubcategoryStore(adapter).delete(subcategory_id)
    except RecordNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordInUse as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MessageResponse(message="Subcategory deleted successfully")


@router.get("/summary", response_model=SummaryResponse)
def monthly_summary(adapter: DatabaseAdapter = Depends(get_adapter)) -> SummaryResponse:
    summary = build_monthly_summary(adapter)
    return SummaryResponse(
        total_pen=summary.total_pen,
        total_usd=summary.total_usd,
        by_category=summary.by_category,
        by_subcategory=summary.by_subcategory,
        by_owner=summary.by_owner,
    )


app.include_router(router)
app.include_router(router, prefix="/api", include_in_schema=False)
