# tests/test_classification.py
import math

import pytest

from src.analytics.classification import (
    MARGIN_BANDS,
    PRICE_DEVIATION_BANDS,
    STOCK_COVERAGE_BANDS,
    classify,
    group_by_band,
    margin_percentage,
    price_deviation_percentage,
    stock_coverage_months,
)


@pytest.mark.parametrize(
    "ratio, label",
    [
        (-0.01, "negative"),
        (0, "low"),
        (9.99, "low"),
        (10, "medium"),
        (20, "good"),
        (35, "good"),
        (35.01, "excellent"),
    ],
)
def test_margin_band_boundaries(ratio, label):
    assert classify(ratio, MARGIN_BANDS) == label


@pytest.mark.parametrize(
    "ratio, label",
    [
        (-15.01, "very-low"),
        (-15, "low"),
        (-5.01, "low"),
        (-5, "average"),
        (5, "average"),
        (5.01, "high"),
        (15, "high"),
        (15.01, "very-high"),
    ],
)
def test_price_deviation_band_boundaries(ratio, label):
    assert classify(ratio, PRICE_DEVIATION_BANDS) == label


@pytest.mark.parametrize(
    "ratio, label",
    [
        (0.99, "critical-low"),
        (1, "to-watch"),
        (3, "optimal"),
        (6, "optimal"),
        (6.01, "over-stock"),
        (12, "over-stock"),
        (12.01, "critical-high"),
    ],
)
def test_stock_coverage_band_boundaries(ratio, label):
    assert classify(ratio, STOCK_COVERAGE_BANDS) == label


@pytest.mark.parametrize("bands", [MARGIN_BANDS, PRICE_DEVIATION_BANDS, STOCK_COVERAGE_BANDS])
def test_every_value_lands_in_exactly_one_band(bands):
    for value in [-1e9, -100, -15, -5, -0.5, 0, 0.5, 1, 3, 5, 6, 10, 12, 15, 20, 35, 100, 1e9]:
        matches = [band for band in bands if band.contains(value)]
        assert len(matches) == 1, value


def test_nan_is_rejected():
    with pytest.raises(ValueError):
        classify(math.nan, MARGIN_BANDS)


def test_group_by_band_keeps_empty_bands():
    report = group_by_band([-3.0, 12.0, 40.0], lambda value: value, MARGIN_BANDS)

    assert list(report.bands) == ["negative", "low", "medium", "good", "excellent"]
    assert report.counts == {"negative": 1, "low": 0, "medium": 1, "good": 0, "excellent": 1}
    assert report.total == 3


def test_margin_percentage_removes_vat():
    # 12.0 TTC при НДС 20% -> 10.0 HT, себестоимость 8.0 -> 20%
    assert margin_percentage(12.0, 8.0, 20.0) == 20.0


def test_margin_percentage_without_cost_is_zero():
    assert margin_percentage(12.0, 0.0, 20.0) == 0.0
    assert margin_percentage(12.0, None, 20.0) == 0.0


def test_price_deviation_percentage():
    assert price_deviation_percentage(11.0, 10.0) == pytest.approx(10.0)
    assert price_deviation_percentage(11.0, 0.0) == 0.0


def test_stock_coverage_uses_default_sales_when_nothing_sold():
    assert stock_coverage_months(6, 0) == 3.0
    assert stock_coverage_months(6, 0, default_monthly_sales=3) == 2.0
    assert stock_coverage_months(6, 4) == 1.5
