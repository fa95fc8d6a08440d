# src/analytics/price_resolver.py
from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from src.config import config
from src.io.db_io import InventorySnapshot


class SnapshotField(str, Enum):
    WEIGHTED_AVERAGE_COST = "weighted_average_price"
    RETAIL_PRICE = "price_with_tax"


class CostPriceResolver:
    """
    Достаёт себестоимость (средневзвешенную) и розничную цену товара
    из истории снимков склада.

    По умолчанию берётся самый свежий снимок товара вообще, без ограничения датой
    периода. bounded_by_period=True включает «последний снимок не позже as_of».
    При равных датах выигрывает строка с большим id.
    Нет снимка или пустое значение -> 0.0, исключений не бросаем.
    """

    def __init__(self, session: Session, bounded_by_period: Optional[bool] = None) -> None:
        self._session = session
        if bounded_by_period is None:
            bounded_by_period = config.analytics.snapshot_bounded_by_period
        self._bounded = bounded_by_period

    def _base_query(self, as_of: Optional[date]):
        query = self._session.query(InventorySnapshot)
        if self._bounded and as_of is not None:
            query = query.filter(InventorySnapshot.date <= as_of)
        return query

    def latest_snapshot(self, product_id: str, as_of: Optional[date] = None) -> Optional[InventorySnapshot]:
        return (
            self._base_query(as_of)
            .filter(InventorySnapshot.product_id == product_id)
            .order_by(InventorySnapshot.date.desc(), InventorySnapshot.id.desc())
            .first()
        )

    def resolve(self, product_id: str, as_of: Optional[date], field: SnapshotField) -> float:
        snapshot = self.latest_snapshot(product_id, as_of)
        return _field_value(snapshot, field)

    def latest_snapshots(
        self,
        product_ids: Iterable[str],
        as_of: Optional[date] = None,
    ) -> Dict[str, InventorySnapshot]:
        """
        Пакетный вариант: product_id -> последний снимок. Товаров без снимков в ответе нет.
        """
        ids: List[str] = list(dict.fromkeys(product_ids))
        if not ids:
            return {}

        rows = (
            self._base_query(as_of)
            .filter(InventorySnapshot.product_id.in_(ids))
            .order_by(
                InventorySnapshot.product_id,
                InventorySnapshot.date.desc(),
                InventorySnapshot.id.desc(),
            )
            .all()
        )

        latest: Dict[str, InventorySnapshot] = {}
        for row in rows:
            # первая строка по товару - самая свежая
            latest.setdefault(row.product_id, row)
        return latest

    def resolve_many(
        self,
        product_ids: Iterable[str],
        as_of: Optional[date],
        field: SnapshotField,
    ) -> Dict[str, float]:
        ids = list(dict.fromkeys(product_ids))
        snapshots = self.latest_snapshots(ids, as_of)
        return {pid: _field_value(snapshots.get(pid), field) for pid in ids}


def _field_value(snapshot: Optional[InventorySnapshot], field: SnapshotField) -> float:
    if snapshot is None:
        return 0.0
    value = getattr(snapshot, field.value)
    return float(value) if value is not None else 0.0
