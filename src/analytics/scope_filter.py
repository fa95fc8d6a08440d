# src/analytics/scope_filter.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy.orm import Query

from src.config import config
from src.data_models import FilterMode, ScopeFilter, ScopeSelection
from src.io.db_io import InternalProduct, Order

logger = logging.getLogger(__name__)


def _ordered_unique(values: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    result: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


def resolve_selection_codes(selection: ScopeSelection) -> List[str]:
    """
    Сводит выбор (товары, лаборатории, сегменты) к одному списку EAN13.

    OR  - объединение всех кодов;
    AND - пересечение непустых наборов по источникам. Один источник - его коды как есть,
          ничего не выбрано - пустой список.
    """
    product_codes = _ordered_unique(selection.products)
    lab_codes = _ordered_unique(c for codes in selection.laboratories.values() for c in codes)
    segment_codes = _ordered_unique(c for codes in selection.segments.values() for c in codes)

    if selection.mode == FilterMode.OR:
        return _ordered_unique(product_codes + lab_codes + segment_codes)

    sources = [codes for codes in (product_codes, lab_codes, segment_codes) if codes]
    if not sources:
        return []
    if len(sources) == 1:
        return sources[0]

    common = set(sources[0])
    for codes in sources[1:]:
        common &= set(codes)
    # порядок первого источника
    return [code for code in sources[0] if code in common]


def build_scope(
    pharmacy_ids: Optional[Iterable[str]] = None,
    product_codes: Optional[Iterable[str]] = None,
    selection_active: bool = False,
) -> ScopeFilter:
    scope = ScopeFilter(
        pharmacy_ids=tuple(_ordered_unique(pharmacy_ids or [])),
        product_codes=tuple(_ordered_unique(product_codes or [])),
        selection_active=selection_active,
    )
    if scope.is_empty_selection:
        # Пустое пересечение не превращаем в «ноль строк»: запрос идёт без фильтра по товарам
        logger.warning("Product selection is active but resolved to no codes, querying all products")
    return scope


def scope_from_selection(selection: ScopeSelection, pharmacy_ids: Optional[Iterable[str]] = None) -> ScopeFilter:
    return build_scope(
        pharmacy_ids=pharmacy_ids,
        product_codes=resolve_selection_codes(selection),
        selection_active=selection.is_active,
    )


def should_use_post(codes: Optional[Iterable[str]], threshold: Optional[int] = None) -> bool:
    """
    Правило выбора транспорта: длинный список кодов не помещается в URL.
    На семантику фильтра не влияет.
    """
    limit = config.api_client.post_threshold if threshold is None else threshold
    return len(list(codes or [])) > limit


def apply_to_orders(query: Query, scope: ScopeFilter) -> Query:
    """
    Фильтр по заказам. Для фильтра по кодам запрос уже должен быть соединён с InternalProduct.
    """
    if scope.filters_pharmacies:
        query = query.filter(Order.pharmacy_id.in_(scope.pharmacy_ids))
    if scope.filters_products:
        query = query.filter(InternalProduct.code_13_ref_id.in_(scope.product_codes))
    return query


def apply_to_products(query: Query, scope: ScopeFilter) -> Query:
    if scope.filters_pharmacies:
        query = query.filter(InternalProduct.pharmacy_id.in_(scope.pharmacy_ids))
    if scope.filters_products:
        query = query.filter(InternalProduct.code_13_ref_id.in_(scope.product_codes))
    return query
