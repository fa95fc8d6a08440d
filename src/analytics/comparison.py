# src/analytics/comparison.py
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from src.analytics.base import CancellationToken, DataAccessError, check_cancelled
from src.data_models import Period, PeriodRequest, ScopeFilter

logger = logging.getLogger(__name__)

PeriodAggregate = Callable[[Period, ScopeFilter, CancellationToken], Any]


@contextmanager
def data_access(message: str) -> Iterator[None]:
    """
    Переводит ошибки SQLAlchemy в DataAccessError с общим сообщением для клиента.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("%s: %s", message, exc)
        raise DataAccessError(message, str(exc)) from exc


async def run_with_comparison(
    aggregate: PeriodAggregate,
    periods: PeriodRequest,
    scope: ScopeFilter,
    cancel_token: Optional[CancellationToken] = None,
) -> Tuple[Any, Optional[Any]]:
    """
    Считает основной период и период сравнения параллельно (каждый в своём потоке
    со своей сессией).

    Всё или ничего: если упал любой проход, падает весь запрос, частичный
    результат наружу не отдаём. Оставшийся проход останавливаем через токен.
    """
    token = cancel_token or CancellationToken()
    check_cancelled(token)

    calls = [asyncio.to_thread(aggregate, periods.primary, scope, token)]
    if periods.comparison is not None:
        calls.append(asyncio.to_thread(aggregate, periods.comparison, scope, token))

    try:
        results = await asyncio.gather(*calls)
    except BaseException:
        # CancelledError от клиента или ошибка одного из проходов
        token.cancel()
        raise

    current = results[0]
    comparison = results[1] if len(results) > 1 else None
    return current, comparison
