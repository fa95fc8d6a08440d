# src/analytics/segment_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Set

from src.analytics.base import ValidationError
from src.analytics.comparison import data_access
from src.analytics.evolution import evolve
from src.analytics.price_resolver import CostPriceResolver, SnapshotField
from src.analytics.scope_filter import apply_to_orders, apply_to_products
from src.analytics.sellout_service import fetch_sale_lines
from src.config import config
from src.data_models import (
    Period,
    PeriodRequest,
    ScopeFilter,
    SegmentDistributionItem,
    SegmentEvolutionItem,
    SellInSegmentItem,
    StockSegmentItem,
)
from src.io.db_io import (
    GlobalProduct,
    InternalProduct,
    InventorySnapshot,
    Order,
    ProductOrder,
    SessionFactory,
    get_session,
)

logger = logging.getLogger(__name__)

VALID_SEGMENT_TYPES = (
    "universe",
    "category",
    "sub_category",
    "brand_lab",
    "lab_distributor",
    "family",
    "sub_family",
    "range_name",
    "specificity",
)

DEFAULT_SEGMENT_TYPE = "universe"


def validate_segment_type(segment_type: Optional[str]) -> str:
    segment_type = segment_type or DEFAULT_SEGMENT_TYPE
    if segment_type not in VALID_SEGMENT_TYPES:
        raise ValidationError("invalid segment type")
    return segment_type


def _segment_label(value: Optional[str]) -> str:
    return value if value is not None else config.analytics.uncategorized_label


class SegmentService:
    """
    Разрезы по сегментам (вселенная, категория, лаборатория и т.д.):
    - распределение продаж;
    - эволюция выручки между двумя периодами;
    - закупки по сегментам;
    - стоимость склада по сегментам на дату.
    """

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    def distribution(self, period: Period, segment_type: str, scope: ScopeFilter) -> List[SegmentDistributionItem]:
        segment_type = validate_segment_type(segment_type)

        with data_access("Failed to compute segment distribution"):
            with self._session_factory() as session:
                lines = fetch_sale_lines(session, period, scope, segment_type)

        revenue: Dict[str, float] = defaultdict(float)
        margin: Dict[str, float] = defaultdict(float)
        quantity: Dict[str, int] = defaultdict(int)
        products: Dict[str, Set[str]] = defaultdict(set)
        for line in lines:
            label = _segment_label(line.segment)
            revenue[label] += line.revenue
            margin[label] += line.margin
            quantity[label] += line.quantity
            products[label].add(line.product_id)

        total_revenue = sum(revenue.values())
        items = [
            SegmentDistributionItem(
                segment=label,
                total_revenue=revenue[label],
                total_margin=margin[label],
                margin_percentage=round(margin[label] / revenue[label] * 100, 2) if revenue[label] > 0 else 0.0,
                total_quantity=quantity[label],
                product_count=len(products[label]),
                revenue_percentage=round(revenue[label] / total_revenue * 100, 2) if total_revenue > 0 else 0.0,
            )
            for label in revenue
        ]
        items.sort(key=lambda item: item.total_revenue, reverse=True)
        return items

    def _revenue_by_segment(self, period: Period, segment_type: str, scope: ScopeFilter) -> Dict[str, float]:
        with self._session_factory() as session:
            lines = fetch_sale_lines(session, period, scope, segment_type)
        revenue: Dict[str, float] = defaultdict(float)
        for line in lines:
            revenue[_segment_label(line.segment)] += line.revenue
        return revenue

    def evolution(self, periods: PeriodRequest, segment_type: str, scope: ScopeFilter) -> List[SegmentEvolutionItem]:
        """
        Эволюция выручки по сегментам. Сегменты берутся из текущего периода;
        если в периоде сравнения сегмента нет, база = 0.
        """
        segment_type = validate_segment_type(segment_type)
        if periods.comparison is None:
            raise ValidationError("dates are required")

        with data_access("Failed to compute segment evolution"):
            current = self._revenue_by_segment(periods.primary, segment_type, scope)
            previous = self._revenue_by_segment(periods.comparison, segment_type, scope)

        items = [
            SegmentEvolutionItem(
                segment=label,
                current_revenue=value,
                previous_revenue=previous.get(label, 0.0),
                evolution=evolve(value, previous.get(label, 0.0)),
            )
            for label, value in current.items()
        ]
        items.sort(key=lambda item: item.current_revenue, reverse=True)
        return items

    def sellin_by_segment(self, period: Period, segment_type: str, scope: ScopeFilter) -> List[SellInSegmentItem]:
        """
        Закупки по сегментам: заказанное количество * последняя себестоимость товара.
        """
        segment_type = validate_segment_type(segment_type)

        with data_access("Failed to compute sell-in by segment"):
            with self._session_factory() as session:
                query = (
                    session.query(
                        ProductOrder.product_id,
                        ProductOrder.quantity,
                        getattr(GlobalProduct, segment_type).label("segment"),
                    )
                    .join(Order, ProductOrder.order_id == Order.id)
                    .join(InternalProduct, ProductOrder.product_id == InternalProduct.id)
                    .outerjoin(GlobalProduct, InternalProduct.code_13_ref_id == GlobalProduct.code_13_ref)
                    .filter(Order.sent_date >= period.start, Order.sent_date <= period.end)
                )
                rows = apply_to_orders(query, scope).all()

                costs = CostPriceResolver(session).resolve_many(
                    [row.product_id for row in rows],
                    period.end,
                    SnapshotField.WEIGHTED_AVERAGE_COST,
                )

        amount: Dict[str, float] = defaultdict(float)
        quantity: Dict[str, int] = defaultdict(int)
        products: Dict[str, Set[str]] = defaultdict(set)
        for row in rows:
            label = _segment_label(row.segment)
            qty = row.quantity or 0
            amount[label] += qty * costs.get(row.product_id, 0.0)
            quantity[label] += qty
            products[label].add(row.product_id)

        items = [
            SellInSegmentItem(
                segment=label,
                total_amount=round(amount[label], 2),
                total_quantity=quantity[label],
                product_count=len(products[label]),
            )
            for label in amount
        ]
        items.sort(key=lambda item: item.total_amount, reverse=True)
        return items

    def stock_by_segment(self, end_date: date, segment_type: str, scope: ScopeFilter) -> List[StockSegmentItem]:
        """
        Склад по сегментам на дату: последний снимок каждого товара не позже end_date,
        товары без остатка не учитываются.
        """
        segment_type = validate_segment_type(segment_type)

        with data_access("Failed to compute stock by segment"):
            with self._session_factory() as session:
                query = (
                    session.query(
                        InventorySnapshot.product_id,
                        InventorySnapshot.stock,
                        InventorySnapshot.weighted_average_price,
                        getattr(GlobalProduct, segment_type).label("segment"),
                    )
                    .join(InternalProduct, InventorySnapshot.product_id == InternalProduct.id)
                    .outerjoin(GlobalProduct, InternalProduct.code_13_ref_id == GlobalProduct.code_13_ref)
                    .filter(InventorySnapshot.date <= end_date)
                )
                rows = (
                    apply_to_products(query, scope)
                    .order_by(
                        InventorySnapshot.product_id,
                        InventorySnapshot.date.desc(),
                        InventorySnapshot.id.desc(),
                    )
                    .all()
                )

        latest = {}
        for row in rows:
            latest.setdefault(row.product_id, row)

        value: Dict[str, float] = defaultdict(float)
        units: Dict[str, float] = defaultdict(float)
        products: Dict[str, Set[str]] = defaultdict(set)
        for product_id, row in latest.items():
            stock = row.stock or 0
            if stock <= 0:
                continue
            label = _segment_label(row.segment)
            value[label] += stock * (row.weighted_average_price or 0.0)
            units[label] += stock
            products[label].add(product_id)

        items = [
            StockSegmentItem(
                segment=label,
                total_value=round(value[label], 2),
                total_units=int(round(units[label])),
                product_count=len(products[label]),
            )
            for label in value
        ]
        items.sort(key=lambda item: item.total_value, reverse=True)
        return items
