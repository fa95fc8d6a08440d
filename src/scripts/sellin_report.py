# src/scripts/sellin_report.py
from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from src.analytics.base import AnalyticsError
from src.analytics.period_resolver import resolve_periods
from src.analytics.scope_filter import build_scope
from src.analytics.sellin_service import SellInService


logger = logging.getLogger(__name__)


async def sellin_report(
    start: str,
    end: str,
    comparison_start: Optional[str] = None,
    comparison_end: Optional[str] = None,
    pharmacy_ids: Optional[List[str]] = None,
) -> None:
    """
    Печатает сводку sell-in и, если задан период сравнения, эволюцию метрик.
    """
    periods = resolve_periods(start, end, comparison_start, comparison_end)
    result = await SellInService().compute(periods, build_scope(pharmacy_ids))

    current = result.current
    print(f"Period: {periods.primary.start} .. {periods.primary.end}")
    print(f"Pharmacies: {pharmacy_ids or 'all'}")
    print(f"Actual dates: {current.actual_date_range.min} .. {current.actual_date_range.max} "
          f"({current.actual_date_range.days} days)")
    print(f"Orders: {current.total_orders}")
    print(f"Units received: {current.total_purchase_quantity}")
    print(f"Purchase amount: {current.total_purchase_amount:.2f}")
    print(f"Average purchase price: {current.average_purchase_price:.2f}")
    print(f"Stock breaks: {current.total_stock_break_quantity} units, "
          f"{current.total_stock_break_amount:.2f} ({current.stock_break_rate}%)")

    if result.comparison is not None:
        print(f"\nEvolution vs {periods.comparison.start} .. {periods.comparison.end}:")
        for name, evolution in result.evolution.items():
            sign = "+" if evolution.is_positive else ""
            print(f"  {name:<22} {sign}{evolution.absolute:.2f} ({sign}{evolution.percentage}%)")


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Console sell-in report")
    parser.add_argument("--start", required=True)
    parser.add_argument("--end", required=True)
    parser.add_argument("--compare-start")
    parser.add_argument("--compare-end")
    parser.add_argument("--pharmacy", action="append", dest="pharmacies", help="repeat for several pharmacies")
    args = parser.parse_args(argv)

    try:
        asyncio.run(
            sellin_report(args.start, args.end, args.compare_start, args.compare_end, args.pharmacies)
        )
    except AnalyticsError as e:
        logger.error("Sell-in report failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
