# src/analytics/sellout_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from src.analytics.base import CancellationToken, check_cancelled
from src.analytics.comparison import data_access, run_with_comparison
from src.analytics.evolution import SELLOUT_METRICS, build_evolution
from src.analytics.scope_filter import apply_to_products
from src.data_models import EvolutionResult, Period, PeriodRequest, ScopeFilter, SellOutPeriodResult
from src.io.db_io import GlobalProduct, InternalProduct, InventorySnapshot, Sale, SessionFactory, get_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleLine:
    product_id: str
    quantity: int
    price_with_tax: float
    weighted_average_price: float
    tva: float
    segment: Optional[str] = None

    @property
    def revenue(self) -> float:
        return self.quantity * self.price_with_tax

    @property
    def margin(self) -> float:
        # себестоимость хранится без НДС, цена продажи - с НДС
        return self.quantity * (self.price_with_tax - self.weighted_average_price * (1 + self.tva / 100))


def fetch_sale_lines(
    session: Session,
    period: Period,
    scope: ScopeFilter,
    segment_type: Optional[str] = None,
) -> List[SaleLine]:
    """
    Продажи за период: цена и себестоимость берутся из снимка, на который ссылается продажа.
    """
    columns = [
        InventorySnapshot.product_id,
        Sale.quantity,
        InventorySnapshot.price_with_tax,
        InventorySnapshot.weighted_average_price,
        InternalProduct.tva,
    ]
    if segment_type:
        columns.append(getattr(GlobalProduct, segment_type).label("segment"))

    query = (
        session.query(*columns)
        .join(InventorySnapshot, Sale.product_id == InventorySnapshot.id)
        .join(InternalProduct, InventorySnapshot.product_id == InternalProduct.id)
    )
    if segment_type:
        query = query.outerjoin(GlobalProduct, InternalProduct.code_13_ref_id == GlobalProduct.code_13_ref)

    query = query.filter(Sale.date >= period.start, Sale.date <= period.end)
    query = apply_to_products(query, scope)

    return [
        SaleLine(
            product_id=row.product_id,
            quantity=row.quantity or 0,
            price_with_tax=row.price_with_tax or 0.0,
            weighted_average_price=row.weighted_average_price or 0.0,
            tva=row.tva or 0.0,
            segment=getattr(row, "segment", None),
        )
        for row in query.all()
    ]


def summarize_sale_lines(lines: List[SaleLine]) -> SellOutPeriodResult:
    return SellOutPeriodResult(
        total_revenue=sum(line.revenue for line in lines),
        total_margin=sum(line.margin for line in lines),
        total_quantity=sum(line.quantity for line in lines),
        references_sold=len({line.product_id for line in lines}),
    )


class SellOutService:
    """
    Сервис sell-out: выручка, маржа и количество продаж с эволюцией к периоду сравнения.
    """

    ERROR_MESSAGE = "Failed to compute sell-out data"

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    def aggregate_period(
        self,
        period: Period,
        scope: ScopeFilter,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SellOutPeriodResult:
        check_cancelled(cancel_token)
        with data_access(self.ERROR_MESSAGE):
            with self._session_factory() as session:
                return summarize_sale_lines(fetch_sale_lines(session, period, scope))

    async def compute(
        self,
        periods: PeriodRequest,
        scope: ScopeFilter,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EvolutionResult:
        current, comparison = await run_with_comparison(self.aggregate_period, periods, scope, cancel_token)

        result = EvolutionResult(primary_period=periods.primary, current=current)
        if comparison is not None:
            result.comparison_period = periods.comparison
            result.comparison = comparison
            result.evolution = build_evolution(
                current.metric_values(),
                comparison.metric_values(),
                SELLOUT_METRICS,
            )
        return result
