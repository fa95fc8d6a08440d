# src/api/schemas.py
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.analytics.classification import OrderedBands
from src.data_models import (
    ClassificationReport,
    Evolution,
    EvolutionResult,
    MetricPeriodResult,
    Period,
    ScopeFilter,
    SellOutPeriodResult,
)


class ScopeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pharmacy_ids: Optional[List[str]] = Field(default=None, alias="pharmacyIds")
    code13refs: Optional[List[str]] = Field(default=None, alias="code13refs")


class PeriodComparisonRequest(ScopeRequest):
    """
    Даты намеренно Optional: отсутствие проверяет period_resolver и отдаёт 400 с понятным текстом.
    """
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    comparison_start_date: Optional[str] = Field(default=None, alias="comparisonStartDate")
    comparison_end_date: Optional[str] = Field(default=None, alias="comparisonEndDate")


class SegmentRequest(PeriodComparisonRequest):
    segment_type: Optional[str] = Field(default="universe", alias="segmentType")


class StockMonthsRequest(ScopeRequest):
    as_of_date: Optional[str] = Field(default=None, alias="asOfDate")


def evolution_payload(evolution: Evolution) -> Dict[str, Any]:
    return {
        "absolute": evolution.absolute,
        "percentage": evolution.percentage,
        "isPositive": evolution.is_positive,
    }


def _metric_period_payload(period: Period, metrics: MetricPeriodResult) -> Dict[str, Any]:
    return {
        "startDate": period.raw_start,
        "endDate": period.raw_end,
        "actualDateRange": {
            "min": metrics.actual_date_range.min,
            "max": metrics.actual_date_range.max,
            "days": metrics.actual_date_range.days,
        },
        "totalPurchaseQuantity": metrics.total_purchase_quantity,
        "totalPurchaseAmount": metrics.total_purchase_amount,
        "totalOrders": metrics.total_orders,
        "averagePurchasePrice": metrics.average_purchase_price,
        "totalOrderedQuantity": metrics.total_ordered_quantity,
        "totalStockBreakQuantity": metrics.total_stock_break_quantity,
        "totalStockBreakAmount": metrics.total_stock_break_amount,
        "stockBreakRate": metrics.stock_break_rate,
    }


def sellin_payload(result: EvolutionResult, scope: ScopeFilter) -> Dict[str, Any]:
    payload = _metric_period_payload(result.primary_period, result.current)
    payload["pharmacyIds"] = scope.pharmacy_ids_or_all()
    payload["code13refs"] = scope.codes_or_all()

    if result.comparison is not None:
        comparison = _metric_period_payload(result.comparison_period, result.comparison)
        comparison["evolution"] = {name: evolution_payload(e) for name, e in result.evolution.items()}
        payload["comparison"] = comparison
    return payload


def _sellout_period_payload(period: Period, metrics: SellOutPeriodResult) -> Dict[str, Any]:
    return {
        "startDate": period.raw_start,
        "endDate": period.raw_end,
        "totalRevenue": metrics.total_revenue,
        "totalMargin": metrics.total_margin,
        "marginPercentage": metrics.margin_percentage,
        "totalQuantity": metrics.total_quantity,
        "referencesSold": metrics.references_sold,
    }


def sellout_payload(result: EvolutionResult, scope: ScopeFilter) -> Dict[str, Any]:
    payload = _sellout_period_payload(result.primary_period, result.current)
    payload["pharmacyIds"] = scope.pharmacy_ids_or_all()
    payload["code13refs"] = scope.codes_or_all()

    if result.comparison is not None:
        comparison = _sellout_period_payload(result.comparison_period, result.comparison)
        comparison["evolution"] = {name: evolution_payload(e) for name, e in result.evolution.items()}
        payload["comparison"] = comparison
    return payload


def rows_payload(items: List[Any]) -> List[Dict[str, Any]]:
    rows = []
    for item in items:
        row = asdict(item)
        if isinstance(row.get("evolution"), dict):
            row["evolution"] = evolution_payload(item.evolution)
            # плоское поле для старых клиентов
            row["evolution_percentage"] = item.evolution.percentage
        rows.append(row)
    return rows


def classification_payload(report: ClassificationReport, bands: OrderedBands, scope: ScopeFilter) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "pharmacyIds": scope.pharmacy_ids_or_all(),
        "code13refs": scope.codes_or_all(),
    }
    for band in bands:
        payload[band.key] = rows_payload(report.bands.get(band.label, []))
    payload["counts"] = {band.key: len(report.bands.get(band.label, [])) for band in bands}
    payload["totalProducts"] = report.total
    return payload
