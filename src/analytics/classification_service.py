# src/analytics/classification_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.analytics.classification import (
    MARGIN_BANDS,
    PRICE_DEVIATION_BANDS,
    STOCK_COVERAGE_BANDS,
    group_by_band,
    margin_percentage,
    price_deviation_percentage,
    stock_coverage_months,
)
from src.analytics.comparison import data_access
from src.analytics.price_resolver import CostPriceResolver
from src.analytics.scope_filter import apply_to_products
from src.config import config
from src.data_models import (
    ClassificationReport,
    MarginItem,
    PriceComparisonItem,
    ScopeFilter,
    StockCoverageItem,
)
from src.io.db_io import GlobalProduct, InternalProduct, InventorySnapshot, Sale, SessionFactory, get_session

logger = logging.getLogger(__name__)

PLACEHOLDER_GLOBAL_NAME = "Default Name"


def _display_name(product: InternalProduct, global_product: Optional[GlobalProduct]) -> str:
    if global_product is None or not global_product.name or global_product.name == PLACEHOLDER_GLOBAL_NAME:
        return product.name or product.id
    return global_product.name


def _scoped_products(session: Session, scope: ScopeFilter, require_code: bool = False):
    query = session.query(InternalProduct, GlobalProduct)
    if require_code:
        query = query.join(GlobalProduct, InternalProduct.code_13_ref_id == GlobalProduct.code_13_ref)
    else:
        query = query.outerjoin(GlobalProduct, InternalProduct.code_13_ref_id == GlobalProduct.code_13_ref)
    return apply_to_products(query, scope).order_by(InternalProduct.id).all()


class ClassificationService:
    """
    Классификация товаров по полосам: маржа, отклонение цены от средней по группе,
    запас в месяцах продаж.
    """

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self._session_factory = session_factory

    def margins(self, scope: ScopeFilter) -> ClassificationReport:
        with data_access("Failed to load margin data"):
            with self._session_factory() as session:
                products = _scoped_products(session, scope)
                snapshots = CostPriceResolver(session, bounded_by_period=False).latest_snapshots(
                    p.id for p, _ in products
                )
                sales_rows = (
                    session.query(Sale.product_id, func.sum(Sale.quantity))
                    .filter(Sale.product_id.in_([s.id for s in snapshots.values()]))
                    .group_by(Sale.product_id)
                    .all()
                )
        sales_by_snapshot = {snapshot_id: int(total or 0) for snapshot_id, total in sales_rows}

        # без фильтра показываем только товары на остатке
        only_in_stock = not (scope.filters_pharmacies or scope.filters_products)

        items: List[MarginItem] = []
        for product, global_product in products:
            snapshot = snapshots.get(product.id)
            if snapshot is None:
                continue
            stock = snapshot.stock or 0.0
            if only_in_stock and stock <= 0:
                continue
            price = snapshot.price_with_tax or 0.0
            cost = snapshot.weighted_average_price or 0.0
            items.append(
                MarginItem(
                    id=product.id,
                    display_name=_display_name(product, global_product),
                    code_13_ref=product.code_13_ref_id,
                    category=global_product.category if global_product else None,
                    brand_lab=global_product.brand_lab if global_product else None,
                    current_stock=stock,
                    price_with_tax=price,
                    weighted_average_price=cost,
                    tva_rate=product.tva or 0.0,
                    margin_percentage=margin_percentage(price, cost, product.tva),
                    total_sales=sales_by_snapshot.get(snapshot.id, 0),
                )
            )

        items.sort(key=lambda item: item.margin_percentage)
        return group_by_band(items, lambda item: item.margin_percentage, MARGIN_BANDS)

    def price_comparison(self, scope: ScopeFilter) -> ClassificationReport:
        """
        Цена аптеки против средней цены того же EAN13 по всем аптекам группы.
        Несколько товаров с одним EAN13 схлопываются в одну строку.
        """
        with data_access("Failed to compare prices"):
            with self._session_factory() as session:
                products = _scoped_products(session, scope, require_code=True)
                codes = sorted({p.code_13_ref_id for p, _ in products})
                peers = (
                    session.query(InternalProduct.id, InternalProduct.code_13_ref_id)
                    .filter(InternalProduct.code_13_ref_id.in_(codes))
                    .all()
                )
                resolver = CostPriceResolver(session, bounded_by_period=False)
                own_snapshots = resolver.latest_snapshots(p.id for p, _ in products)
                peer_snapshots = resolver.latest_snapshots(peer_id for peer_id, _ in peers)

        market: Dict[str, List[float]] = defaultdict(list)
        for peer_id, code in peers:
            snapshot = peer_snapshots.get(peer_id)
            if snapshot is not None and snapshot.price_with_tax is not None:
                market[code].append(float(snapshot.price_with_tax))

        own_prices: Dict[str, List[float]] = defaultdict(list)
        first_product: Dict[str, tuple] = {}
        for product, global_product in products:
            snapshot = own_snapshots.get(product.id)
            if snapshot is None or snapshot.price_with_tax is None or not market.get(product.code_13_ref_id):
                continue
            own_prices[product.code_13_ref_id].append(float(snapshot.price_with_tax))
            first_product.setdefault(product.code_13_ref_id, (product, global_product))

        items: List[PriceComparisonItem] = []
        for code, prices in own_prices.items():
            product, global_product = first_product[code]
            price = sum(prices) / len(prices)
            avg_price = sum(market[code]) / len(market[code])
            items.append(
                PriceComparisonItem(
                    id=code,
                    display_name=_display_name(product, global_product),
                    code_13_ref=code,
                    brand_lab=global_product.brand_lab,
                    category=global_product.category,
                    price=price,
                    avg_price=avg_price,
                    min_price=min(market[code]),
                    max_price=max(market[code]),
                    price_difference_percentage=price_deviation_percentage(price, avg_price),
                )
            )

        return group_by_band(items, lambda item: item.price_difference_percentage, PRICE_DEVIATION_BANDS)

    def stock_months(self, scope: ScopeFilter, as_of: Optional[date] = None) -> ClassificationReport:
        """
        Запас в месяцах: текущий остаток / средние продажи в месяц за последние
        sales_window_months месяцев. Агрегация по EAN13.
        """
        as_of = as_of or date.today()
        window = config.analytics.sales_window_months
        window_start = (pd.Timestamp(as_of) - pd.DateOffset(months=window)).date()

        with data_access("Failed to compute stock months"):
            with self._session_factory() as session:
                products = _scoped_products(session, scope, require_code=True)
                snapshots = CostPriceResolver(session, bounded_by_period=False).latest_snapshots(
                    p.id for p, _ in products
                )
                sales_rows = (
                    session.query(InventorySnapshot.product_id, func.sum(Sale.quantity))
                    .join(Sale, Sale.product_id == InventorySnapshot.id)
                    .filter(InventorySnapshot.product_id.in_(list(snapshots)))
                    .filter(Sale.date >= window_start, Sale.date <= as_of)
                    .group_by(InventorySnapshot.product_id)
                    .all()
                )
        sold = {product_id: float(total or 0) for product_id, total in sales_rows}

        stock_by_code: Dict[str, float] = defaultdict(float)
        sales_by_code: Dict[str, float] = defaultdict(float)
        first_product: Dict[str, tuple] = {}
        for product, global_product in products:
            snapshot = snapshots.get(product.id)
            if snapshot is None or (snapshot.stock or 0) <= 0:
                continue
            code = product.code_13_ref_id
            stock_by_code[code] += snapshot.stock
            sales_by_code[code] += sold.get(product.id, 0.0) / window
            first_product.setdefault(code, (product, global_product))

        items: List[StockCoverageItem] = []
        for code, stock in stock_by_code.items():
            product, global_product = first_product[code]
            items.append(
                StockCoverageItem(
                    id=code,
                    display_name=_display_name(product, global_product),
                    code_13_ref=code,
                    category=global_product.category,
                    brand_lab=global_product.brand_lab,
                    current_stock=stock,
                    avg_monthly_sales=sales_by_code[code],
                    stock_months=stock_coverage_months(stock, sales_by_code[code]),
                )
            )

        items.sort(key=lambda item: item.stock_months)
        return group_by_band(items, lambda item: item.stock_months, STOCK_COVERAGE_BANDS)
