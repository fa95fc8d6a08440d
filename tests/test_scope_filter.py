# tests/test_scope_filter.py
import pytest

from src.analytics.scope_filter import build_scope, resolve_selection_codes, scope_from_selection, should_use_post
from src.data_models import FilterMode, ScopeSelection


def _selection(mode):
    return ScopeSelection(
        products=["A", "B", "C"],
        laboratories={"Sanofi": ["B", "C", "D"]},
        segments={"Antalgique": ["C", "B", "E"]},
        mode=mode,
    )


def test_and_mode_intersects_non_empty_sources():
    assert resolve_selection_codes(_selection(FilterMode.AND)) == ["B", "C"]


def test_or_mode_unions_all_sources():
    assert resolve_selection_codes(_selection(FilterMode.OR)) == ["A", "B", "C", "D", "E"]


def test_and_mode_ignores_empty_sources():
    selection = ScopeSelection(products=[], laboratories={"Sanofi": ["B", "D"]}, mode=FilterMode.AND)

    assert resolve_selection_codes(selection) == ["B", "D"]


def test_empty_selection_resolves_to_no_codes():
    assert resolve_selection_codes(ScopeSelection()) == []


def test_empty_intersection_means_no_product_filter():
    selection = ScopeSelection(products=["A"], laboratories={"Upsa": ["Z"]}, mode=FilterMode.AND)

    scope = scope_from_selection(selection, pharmacy_ids=["P1"])

    assert scope.is_empty_selection is True
    assert scope.filters_products is False
    assert scope.codes_or_all() == "all"
    assert scope.pharmacy_ids_or_all() == ["P1"]


def test_selection_clear_resets_everything():
    selection = _selection(FilterMode.OR)
    selection.clear()

    assert selection.is_active is False


def test_build_scope_deduplicates_keeping_order():
    scope = build_scope(["P2", "P1", "P2"], ["B", "A", "B"])

    assert scope.pharmacy_ids == ("P2", "P1")
    assert scope.product_codes == ("B", "A")


@pytest.mark.parametrize(
    "count, expected",
    [(0, False), (20, False), (21, True), (150, True)],
)
def test_should_use_post_threshold(count, expected):
    codes = [f"34000000{i:05d}" for i in range(count)]

    assert should_use_post(codes, threshold=20) is expected
