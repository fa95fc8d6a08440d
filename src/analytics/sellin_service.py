# src/analytics/sellin_service.py
from __future__ import annotations

import logging
from typing import Optional

from src.analytics.base import CancellationToken
from src.analytics.comparison import data_access, run_with_comparison
from src.analytics.evolution import SELLIN_METRICS, build_evolution
from src.analytics.price_resolver import CostPriceResolver
from src.analytics.sellin_aggregator import PurchaseBreakAggregator
from src.data_models import EvolutionResult, MetricPeriodResult, Period, PeriodRequest, ScopeFilter
from src.io.db_io import SessionFactory, get_session

logger = logging.getLogger(__name__)


class SellInService:
    """
    Сервис sell-in: метрики закупок за основной период, период сравнения и эволюция.

    Отвечает за:
    - отдельную сессию на каждый проход агрегатора;
    - маппинг ошибок БД в DataAccessError;
    - сборку EvolutionResult.
    """

    ERROR_MESSAGE = "Failed to compute sell-in data"

    def __init__(
        self,
        session_factory: SessionFactory = get_session,
        bounded_by_period: Optional[bool] = None,
    ) -> None:
        self._session_factory = session_factory
        self._bounded = bounded_by_period

    def aggregate_period(
        self,
        period: Period,
        scope: ScopeFilter,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MetricPeriodResult:
        with data_access(self.ERROR_MESSAGE):
            with self._session_factory() as session:
                resolver = CostPriceResolver(session, bounded_by_period=self._bounded)
                return PurchaseBreakAggregator(session, resolver).aggregate(period, scope, cancel_token)

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
                SELLIN_METRICS,
            )

        logger.info(
            "Sell-in computed for %s..%s: %s orders, %s units received",
            periods.primary.start,
            periods.primary.end,
            current.total_orders,
            current.total_purchase_quantity,
        )
        return result
