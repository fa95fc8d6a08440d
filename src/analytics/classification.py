# src/analytics/classification.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from src.config import config
from src.data_models import ClassificationReport

T = TypeVar("T")


@dataclass(frozen=True)
class Band:
    """
    Интервал значений с меткой. Включённость границ задаётся явно,
    бесконечные границы - через math.inf.
    """
    label: str
    key: str  # ключ в JSON-ответе
    lower: float = -math.inf
    upper: float = math.inf
    lower_inclusive: bool = False
    upper_inclusive: bool = False

    def contains(self, value: float) -> bool:
        above = value >= self.lower if self.lower_inclusive else value > self.lower
        below = value <= self.upper if self.upper_inclusive else value < self.upper
        return above and below


OrderedBands = Sequence[Band]

# Маржа, %: <0 | [0,10) | [10,20) | [20,35] | >35
MARGIN_BANDS: OrderedBands = (
    Band("negative", "negativeMargin", upper=0),
    Band("low", "lowMargin", lower=0, upper=10, lower_inclusive=True),
    Band("medium", "mediumMargin", lower=10, upper=20, lower_inclusive=True),
    Band("good", "goodMargin", lower=20, upper=35, lower_inclusive=True, upper_inclusive=True),
    Band("excellent", "excellentMargin", lower=35),
)

# Отклонение цены от средней по группе, %: <-15 | [-15,-5) | [-5,5] | (5,15] | >15
PRICE_DEVIATION_BANDS: OrderedBands = (
    Band("very-low", "veryLowPrice", upper=-15),
    Band("low", "lowPrice", lower=-15, upper=-5, lower_inclusive=True),
    Band("average", "averagePrice", lower=-5, upper=5, lower_inclusive=True, upper_inclusive=True),
    Band("high", "highPrice", lower=5, upper=15, upper_inclusive=True),
    Band("very-high", "veryHighPrice", lower=15),
)

# Запас в месяцах: <1 | [1,3) | [3,6] | (6,12] | >12
STOCK_COVERAGE_BANDS: OrderedBands = (
    Band("critical-low", "criticalLow", upper=1),
    Band("to-watch", "toWatch", lower=1, upper=3, lower_inclusive=True),
    Band("optimal", "optimal", lower=3, upper=6, lower_inclusive=True, upper_inclusive=True),
    Band("over-stock", "overStock", lower=6, upper=12, upper_inclusive=True),
    Band("critical-high", "criticalHigh", lower=12),
)


def find_band(ratio: float, bands: OrderedBands) -> Band:
    """
    Первая полоса, в которую попадает значение (порядок важен).
    """
    if ratio is None or math.isnan(ratio):
        raise ValueError(f"Cannot classify ratio {ratio!r}")
    for band in bands:
        if band.contains(ratio):
            return band
    raise ValueError(f"Ratio {ratio!r} is not covered by any band")


def classify(ratio: float, bands: OrderedBands) -> str:
    return find_band(ratio, bands).label


def group_by_band(
    items: Iterable[T],
    ratio_getter: Callable[[T], float],
    bands: OrderedBands,
) -> ClassificationReport:
    """
    Раскладывает сущности по полосам. Все полосы присутствуют в отчёте, даже пустые.
    """
    grouped = {band.label: [] for band in bands}
    for item in items:
        grouped[classify(ratio_getter(item), bands)].append(item)
    return ClassificationReport(bands=grouped)


def margin_percentage(price_with_tax: float, weighted_average_price: float, vat_rate: Optional[float]) -> float:
    """
    Валовая маржа: (цена без НДС - себестоимость) / цена без НДС * 100.
    Без себестоимости маржу не считаем -> 0.
    """
    if not weighted_average_price or weighted_average_price <= 0:
        return 0.0
    price_excl_tax = (price_with_tax or 0.0) / (1 + (vat_rate or 0.0) / 100)
    if price_excl_tax <= 0:
        return 0.0
    return round((price_excl_tax - weighted_average_price) / price_excl_tax * 100, 2)


def price_deviation_percentage(price: float, average_price: float) -> float:
    if not average_price:
        return 0.0
    return (price - average_price) / average_price * 100


def stock_coverage_months(
    current_stock: float,
    avg_monthly_sales: float,
    default_monthly_sales: Optional[float] = None,
) -> float:
    """
    Сколько месяцев продаж покрывает текущий остаток.
    Если продаж не было, делим на default_monthly_sales (по умолчанию 2 шт./мес.).
    """
    if default_monthly_sales is None:
        default_monthly_sales = config.analytics.default_monthly_sales
    monthly = avg_monthly_sales if avg_monthly_sales and avg_monthly_sales > 0 else default_monthly_sales
    return (current_stock or 0.0) / monthly
