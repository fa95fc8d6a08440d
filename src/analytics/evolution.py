# src/analytics/evolution.py
from __future__ import annotations

from typing import Dict, Iterable, Mapping

from src.data_models import Evolution

SELLIN_METRICS = (
    "purchaseQuantity",
    "purchaseAmount",
    "orders",
    "averagePurchasePrice",
    "stockBreakQuantity",
    "stockBreakAmount",
    "stockBreakRate",
)

SELLOUT_METRICS = ("revenue", "margin", "quantity", "marginPercentage")


def evolve(current: float, comparison: float) -> Evolution:
    """
    Абсолютная и процентная разница между текущим значением и значением сравнения.

    Процент считаем только при comparison > 0: для нуля и отрицательной базы -> 0.
    """
    absolute = current - comparison
    percentage = 0.0
    if comparison > 0:
        percentage = round((current - comparison) / comparison * 100, 2)
    return Evolution(absolute=absolute, percentage=percentage, is_positive=absolute >= 0)


def build_evolution(
    current: Mapping[str, float],
    comparison: Mapping[str, float],
    metrics: Iterable[str],
) -> Dict[str, Evolution]:
    return {name: evolve(current.get(name, 0), comparison.get(name, 0)) for name in metrics}
