# src/api/app.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.analytics.base import CancellationToken, DataAccessError, OperationCancelled, ValidationError
from src.analytics.classification import MARGIN_BANDS, PRICE_DEVIATION_BANDS, STOCK_COVERAGE_BANDS
from src.analytics.classification_service import ClassificationService
from src.analytics.period_resolver import resolve_end_date, resolve_periods
from src.analytics.scope_filter import build_scope
from src.analytics.segment_service import SegmentService
from src.analytics.sellin_service import SellInService
from src.analytics.sellout_service import SellOutService
from src.api.schemas import (
    PeriodComparisonRequest,
    ScopeRequest,
    SegmentRequest,
    StockMonthsRequest,
    classification_payload,
    rows_payload,
    sellin_payload,
    sellout_payload,
)
from src.io.db_io import SessionFactory, get_session

logger = logging.getLogger(__name__)


DISCONNECT_POLL_SECONDS = 0.5


def _scope(body: ScopeRequest):
    return build_scope(body.pharmacy_ids, body.code13refs)


def request_error_message(errors) -> str:
    """
    Текст 400-ответа для ошибок разбора запроса: первое поле с проблемой.
    """
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
        if loc:
            return f"Invalid value for {'.'.join(loc)}"
    return "Invalid request body"


async def watch_disconnect(
    request: Request,
    token: CancellationToken,
    poll_seconds: float = DISCONNECT_POLL_SECONDS,
) -> None:
    """
    Отменяет токен, если клиент закрыл соединение, не дождавшись ответа.
    """
    while not token.is_cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected from %s, cancelling computation", request.url.path)
            token.cancel()
            return
        await asyncio.sleep(poll_seconds)


async def run_cancellable(request: Request, compute):
    """
    Запускает compute(token) и параллельно следит за отключением клиента.
    """
    token = CancellationToken()
    watcher = asyncio.create_task(watch_disconnect(request, token))
    try:
        return await compute(token)
    finally:
        watcher.cancel()


def create_app(session_factory: SessionFactory = get_session) -> FastAPI:
    """
    Собирает FastAPI-приложение. session_factory подменяется в тестах.
    """
    app = FastAPI(title="Pharmacy sales analytics")

    app.state.sellin = SellInService(session_factory)
    app.state.sellout = SellOutService(session_factory)
    app.state.segments = SegmentService(session_factory)
    app.state.classification = ClassificationService(session_factory)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": request_error_message(exc.errors())})

    @app.exception_handler(DataAccessError)
    async def _data_access_error(request: Request, exc: DataAccessError) -> JSONResponse:
        logger.error("Data access error on %s: %s (%s)", request.url.path, exc.message, exc.details)
        return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.details})

    @app.exception_handler(OperationCancelled)
    async def _cancelled(request: Request, exc: OperationCancelled) -> JSONResponse:
        return JSONResponse(status_code=499, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})

    # ---------- sell-in / sell-out ----------

    async def _sellin(request: Request, body: Optional[PeriodComparisonRequest]) -> dict:
        # без тела запроса - те же 400, что и при пустых датах
        body = body or PeriodComparisonRequest()
        periods = resolve_periods(
            body.start_date, body.end_date, body.comparison_start_date, body.comparison_end_date
        )
        scope = _scope(body)
        result = await run_cancellable(request, lambda token: app.state.sellin.compute(periods, scope, token))
        return sellin_payload(result, scope)

    @app.post("/api/sales/sellin")
    async def sellin_post(request: Request, body: Optional[PeriodComparisonRequest] = None) -> dict:
        return await _sellin(request, body)

    @app.get("/api/sales/sellin")
    async def sellin_get(
        request: Request,
        startDate: Optional[str] = None,
        endDate: Optional[str] = None,
        comparisonStartDate: Optional[str] = None,
        comparisonEndDate: Optional[str] = None,
        pharmacyIds: List[str] = Query(default=[]),
        code13refs: List[str] = Query(default=[]),
    ) -> dict:
        body = PeriodComparisonRequest(
            startDate=startDate,
            endDate=endDate,
            comparisonStartDate=comparisonStartDate,
            comparisonEndDate=comparisonEndDate,
            pharmacyIds=pharmacyIds,
            code13refs=code13refs,
        )
        return await _sellin(request, body)

    @app.post("/api/sales/sellout")
    async def sellout(request: Request, body: Optional[PeriodComparisonRequest] = None) -> dict:
        body = body or PeriodComparisonRequest()
        periods = resolve_periods(
            body.start_date, body.end_date, body.comparison_start_date, body.comparison_end_date
        )
        scope = _scope(body)
        result = await run_cancellable(request, lambda token: app.state.sellout.compute(periods, scope, token))
        return sellout_payload(result, scope)

    # ---------- сегменты ----------

    def _segment_distribution(body: SegmentRequest) -> dict:
        periods = resolve_periods(body.start_date, body.end_date)
        scope = _scope(body)
        items = app.state.segments.distribution(periods.primary, body.segment_type, scope)
        return {
            "startDate": body.start_date,
            "endDate": body.end_date,
            "segmentType": body.segment_type or "universe",
            "pharmacyIds": scope.pharmacy_ids_or_all(),
            "code13refs": scope.codes_or_all(),
            "distributions": rows_payload(items),
        }

    @app.get("/api/sales/segment-distribution")
    def segment_distribution_get(
        startDate: Optional[str] = None,
        endDate: Optional[str] = None,
        segmentType: str = "universe",
        pharmacyIds: List[str] = Query(default=[]),
        code13refs: List[str] = Query(default=[]),
    ) -> dict:
        body = SegmentRequest(
            startDate=startDate,
            endDate=endDate,
            segmentType=segmentType,
            pharmacyIds=pharmacyIds,
            code13refs=code13refs,
        )
        return _segment_distribution(body)

    @app.post("/api/sales/segment-distribution")
    def segment_distribution_post(body: SegmentRequest) -> dict:
        return _segment_distribution(body)

    @app.post("/api/sales/segment-evolution")
    def segment_evolution(body: SegmentRequest) -> dict:
        periods = resolve_periods(
            body.start_date,
            body.end_date,
            body.comparison_start_date,
            body.comparison_end_date,
            require_comparison=True,
        )
        items = app.state.segments.evolution(periods, body.segment_type, _scope(body))
        return {"data": rows_payload(items)}

    @app.post("/api/sellin/by-segment")
    def sellin_by_segment(body: SegmentRequest) -> dict:
        periods = resolve_periods(body.start_date, body.end_date)
        scope = _scope(body)
        items = app.state.segments.sellin_by_segment(periods.primary, body.segment_type, scope)
        return {
            "startDate": body.start_date,
            "endDate": body.end_date,
            "segmentType": body.segment_type or "universe",
            "pharmacyIds": scope.pharmacy_ids_or_all(),
            "code13refs": scope.codes_or_all(),
            "distributions": rows_payload(items),
        }

    @app.post("/api/stock/by-segment")
    def stock_by_segment(body: SegmentRequest) -> dict:
        end_date = resolve_end_date(body.end_date)
        scope = _scope(body)
        items = app.state.segments.stock_by_segment(end_date, body.segment_type, scope)
        return {
            "endDate": body.end_date,
            "segmentType": body.segment_type or "universe",
            "pharmacyIds": scope.pharmacy_ids_or_all(),
            "code13refs": scope.codes_or_all(),
            "distributions": rows_payload(items),
        }

    # ---------- классификации ----------

    def _margins(body: ScopeRequest) -> dict:
        scope = _scope(body)
        return classification_payload(app.state.classification.margins(scope), MARGIN_BANDS, scope)

    @app.get("/api/products/margins")
    def margins_get(
        pharmacyIds: List[str] = Query(default=[]),
        code13refs: List[str] = Query(default=[]),
    ) -> dict:
        return _margins(ScopeRequest(pharmacyIds=pharmacyIds, code13refs=code13refs))

    @app.post("/api/products/margins")
    def margins_post(body: ScopeRequest) -> dict:
        return _margins(body)

    @app.post("/api/products/price-comparison")
    def price_comparison(body: ScopeRequest) -> dict:
        scope = _scope(body)
        report = app.state.classification.price_comparison(scope)
        return classification_payload(report, PRICE_DEVIATION_BANDS, scope)

    def _stock_months(body: StockMonthsRequest) -> dict:
        scope = _scope(body)
        as_of = resolve_end_date(body.as_of_date) if body.as_of_date else None
        report = app.state.classification.stock_months(scope, as_of)
        return classification_payload(report, STOCK_COVERAGE_BANDS, scope)

    @app.get("/api/inventory/stock-months")
    def stock_months_get(
        pharmacyIds: List[str] = Query(default=[]),
        code13refs: List[str] = Query(default=[]),
        asOfDate: Optional[str] = None,
    ) -> dict:
        return _stock_months(StockMonthsRequest(pharmacyIds=pharmacyIds, code13refs=code13refs, asOfDate=asOfDate))

    @app.post("/api/inventory/stock-months")
    def stock_months_post(body: StockMonthsRequest) -> dict:
        return _stock_months(body)

    return app
