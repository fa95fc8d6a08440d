# src/data_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Period:
    """
    Период анализа: обе границы включительно.

    raw_start / raw_end - строки в том виде, в каком их прислал клиент
    (возвращаются в ответе без изменений).
    """
    start: date
    end: date
    raw_start: str = ""
    raw_end: str = ""


@dataclass(frozen=True)
class PeriodRequest:
    primary: Period
    comparison: Optional[Period] = None

    @property
    def has_comparison(self) -> bool:
        return self.comparison is not None


class FilterMode(str, Enum):
    AND = "AND"  # пересечение наборов кодов
    OR = "OR"  # объединение наборов кодов


@dataclass
class ScopeSelection:
    """
    Выбор пользователя в фильтре: товары, лаборатории, сегменты.

    Живёт только в памяти запроса, на сервере не сохраняется.
    products - EAN13 выбранных товаров,
    laboratories / segments - имя/идентификатор -> список EAN13, который он раскрывает.
    """
    products: List[str] = field(default_factory=list)
    laboratories: Dict[str, List[str]] = field(default_factory=dict)
    segments: Dict[str, List[str]] = field(default_factory=dict)
    mode: FilterMode = FilterMode.AND

    @property
    def is_active(self) -> bool:
        return bool(self.products or self.laboratories or self.segments)

    def clear(self) -> None:
        self.products = []
        self.laboratories = {}
        self.segments = {}


@dataclass(frozen=True)
class ScopeFilter:
    """
    Итоговый фильтр запроса.

    Пустой список (или None) означает «без ограничения» по этому измерению.
    selection_active=True при пустом product_codes - пользователь что-то выбрал,
    но пересечение оказалось пустым.
    """
    pharmacy_ids: tuple = ()
    product_codes: tuple = ()
    selection_active: bool = False

    @property
    def filters_pharmacies(self) -> bool:
        return len(self.pharmacy_ids) > 0

    @property
    def filters_products(self) -> bool:
        return len(self.product_codes) > 0

    @property
    def is_empty_selection(self) -> bool:
        return self.selection_active and not self.product_codes

    def pharmacy_ids_or_all(self) -> Any:
        return list(self.pharmacy_ids) if self.pharmacy_ids else "all"

    def codes_or_all(self) -> Any:
        return list(self.product_codes) if self.product_codes else "all"


@dataclass(frozen=True)
class OrderLineRecord:
    """
    Одна строка заказа вместе с атрибутами родительского заказа.
    """
    order_id: str
    product_id: str
    sent_date: date
    quantity: int
    bonus_quantity: int = 0
    received_quantity: int = 0

    @property
    def ordered_total(self) -> int:
        return self.quantity + self.bonus_quantity

    @property
    def stock_break_quantity(self) -> int:
        return max(0, self.ordered_total - self.received_quantity)


@dataclass
class DateSpan:
    min: Optional[str] = None
    max: Optional[str] = None
    days: int = 0


@dataclass
class MetricPeriodResult:
    """
    Результат агрегатора закупок и дефектуры за один (scope, period).
    Пересчитывается на каждый запрос, нигде не хранится.
    """
    total_purchase_quantity: int = 0
    total_purchase_amount: float = 0.0
    total_orders: int = 0
    total_ordered_quantity: int = 0
    total_stock_break_quantity: int = 0
    total_stock_break_amount: float = 0.0
    stock_break_rate: float = 0.0
    actual_date_range: DateSpan = field(default_factory=DateSpan)

    @property
    def average_purchase_price(self) -> float:
        if self.total_purchase_quantity > 0:
            return self.total_purchase_amount / self.total_purchase_quantity
        return 0.0

    def metric_values(self) -> Dict[str, float]:
        return {
            "purchaseQuantity": self.total_purchase_quantity,
            "purchaseAmount": self.total_purchase_amount,
            "orders": self.total_orders,
            "averagePurchasePrice": self.average_purchase_price,
            "stockBreakQuantity": self.total_stock_break_quantity,
            "stockBreakAmount": self.total_stock_break_amount,
            "stockBreakRate": self.stock_break_rate,
        }


@dataclass
class SellOutPeriodResult:
    total_revenue: float = 0.0
    total_margin: float = 0.0
    total_quantity: int = 0
    references_sold: int = 0

    @property
    def margin_percentage(self) -> float:
        if self.total_revenue > 0:
            return round(self.total_margin / self.total_revenue * 100, 2)
        return 0.0

    def metric_values(self) -> Dict[str, float]:
        return {
            "revenue": self.total_revenue,
            "margin": self.total_margin,
            "quantity": self.total_quantity,
            "marginPercentage": self.margin_percentage,
        }


@dataclass(frozen=True)
class Evolution:
    absolute: float
    percentage: float
    is_positive: bool


@dataclass
class EvolutionResult:
    """
    Основной период + период сравнения + дельты по каждой метрике.
    comparison/evolution отсутствуют, если сравнение не запрашивали.
    """
    primary_period: Period
    current: Any
    comparison_period: Optional[Period] = None
    comparison: Optional[Any] = None
    evolution: Dict[str, Evolution] = field(default_factory=dict)


@dataclass
class SegmentDistributionItem:
    segment: str
    total_revenue: float
    total_margin: float
    margin_percentage: float
    total_quantity: int
    product_count: int
    revenue_percentage: float


@dataclass
class SegmentEvolutionItem:
    segment: str
    current_revenue: float
    previous_revenue: float
    evolution: Evolution


@dataclass
class SellInSegmentItem:
    segment: str
    total_amount: float
    total_quantity: int
    product_count: int


@dataclass
class StockSegmentItem:
    segment: str
    total_value: float
    total_units: int
    product_count: int


@dataclass
class MarginItem:
    id: str
    display_name: str
    code_13_ref: Optional[str]
    category: Optional[str]
    brand_lab: Optional[str]
    current_stock: float
    price_with_tax: float
    weighted_average_price: float
    tva_rate: float
    margin_percentage: float
    total_sales: int = 0


@dataclass
class PriceComparisonItem:
    id: str
    display_name: str
    code_13_ref: str
    brand_lab: Optional[str]
    category: Optional[str]
    price: float
    avg_price: float
    min_price: float
    max_price: float
    price_difference_percentage: float


@dataclass
class StockCoverageItem:
    id: str
    display_name: str
    code_13_ref: str
    category: Optional[str]
    brand_lab: Optional[str]
    current_stock: float
    avg_monthly_sales: float
    stock_months: float


@dataclass
class ClassificationReport:
    """
    Сущности, разложенные по полосам: label -> список.
    Порядок полос совпадает с порядком в таблице порогов.
    """
    bands: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[str, int]:
        return {label: len(items) for label, items in self.bands.items()}

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.bands.values())
