# src/analytics/sellin_aggregator.py
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from src.analytics.base import CancellationToken, check_cancelled
from src.analytics.price_resolver import CostPriceResolver, SnapshotField
from src.analytics.scope_filter import apply_to_orders
from src.data_models import DateSpan, MetricPeriodResult, OrderLineRecord, Period, ScopeFilter
from src.io.db_io import InternalProduct, Order, ProductOrder

logger = logging.getLogger(__name__)


def summarize_order_lines(
    lines: Iterable[OrderLineRecord],
    costs: Mapping[str, float],
    prices: Mapping[str, float],
) -> MetricPeriodResult:
    """
    Считает метрики закупок и дефектуры по набору строк заказов.

    По товару:
      заказано  = Σ(qte + qte_ug)
      получено  = Σ qte_r
      дефектура = Σ max(0, заказано_строки - получено_строки)
    Деньги:
      сумма закупки    += получено * себестоимость товара
      сумма дефектуры  += дефектура * розничная цена товара
    Нет цены/себестоимости -> 0, количества товара всё равно учитываются.
    """
    ordered: Dict[str, int] = defaultdict(int)
    received: Dict[str, int] = defaultdict(int)
    breaks: Dict[str, int] = defaultdict(int)
    order_ids = set()
    days = set()

    for line in lines:
        ordered[line.product_id] += line.ordered_total
        received[line.product_id] += line.received_quantity
        breaks[line.product_id] += line.stock_break_quantity
        order_ids.add(line.order_id)
        days.add(line.sent_date)

    purchase_amount = 0.0
    stock_break_amount = 0.0
    for product_id in ordered:
        purchase_amount += received[product_id] * costs.get(product_id, 0.0)
        stock_break_amount += breaks[product_id] * prices.get(product_id, 0.0)

    total_ordered = sum(ordered.values())
    total_breaks = sum(breaks.values())

    stock_break_rate = 0.0
    if total_ordered > 0:
        stock_break_rate = round(total_breaks / total_ordered * 100, 2)

    date_range = DateSpan()
    if days:
        date_range = DateSpan(
            min=min(days).isoformat(),
            max=max(days).isoformat(),
            days=len(days),
        )

    return MetricPeriodResult(
        total_purchase_quantity=sum(received.values()),
        total_purchase_amount=purchase_amount,
        total_orders=len(order_ids),
        total_ordered_quantity=total_ordered,
        total_stock_break_quantity=total_breaks,
        total_stock_break_amount=stock_break_amount,
        stock_break_rate=stock_break_rate,
        actual_date_range=date_range,
    )


class PurchaseBreakAggregator:
    """
    Агрегатор sell-in: закупки, полученные количества, дефектура за период в рамках scope.
    """

    def __init__(self, session: Session, resolver: Optional[CostPriceResolver] = None) -> None:
        self._session = session
        self._resolver = resolver or CostPriceResolver(session)

    def fetch_lines(self, period: Period, scope: ScopeFilter) -> List[OrderLineRecord]:
        query = (
            self._session.query(
                ProductOrder.order_id,
                ProductOrder.product_id,
                Order.sent_date,
                ProductOrder.quantity,
                ProductOrder.bonus_quantity,
                ProductOrder.received_quantity,
            )
            .join(Order, ProductOrder.order_id == Order.id)
        )
        if scope.filters_products:
            query = query.join(InternalProduct, ProductOrder.product_id == InternalProduct.id)

        query = query.filter(Order.sent_date >= period.start, Order.sent_date <= period.end)
        query = apply_to_orders(query, scope)

        return [
            OrderLineRecord(
                order_id=row.order_id,
                product_id=row.product_id,
                sent_date=row.sent_date,
                quantity=row.quantity or 0,
                bonus_quantity=row.bonus_quantity or 0,
                received_quantity=row.received_quantity or 0,
            )
            for row in query.all()
        ]

    def aggregate(
        self,
        period: Period,
        scope: ScopeFilter,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MetricPeriodResult:
        check_cancelled(cancel_token)
        lines = self.fetch_lines(period, scope)
        if not lines:
            logger.info("No order lines between %s and %s for scope %s", period.start, period.end, scope)
            return MetricPeriodResult()

        check_cancelled(cancel_token)
        product_ids = [line.product_id for line in lines]
        costs = self._resolver.resolve_many(product_ids, period.end, SnapshotField.WEIGHTED_AVERAGE_COST)
        prices = self._resolver.resolve_many(product_ids, period.end, SnapshotField.RETAIL_PRICE)

        return summarize_order_lines(lines, costs, prices)
