# src/analytics/base.py
from __future__ import annotations

import threading
from typing import Optional


class AnalyticsError(Exception):
    """Базовая ошибка аналитического движка."""


class ValidationError(AnalyticsError):
    """Некорректные входные параметры (нет дат периода, неизвестный сегмент). Не ретраим."""


class DataAccessError(AnalyticsError):
    """
    Ошибка обращения к БД.

    message - общее сообщение для клиента, details - текст исходного исключения.
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or ""


class OperationCancelled(AnalyticsError):
    """Запрос отменён вызывающей стороной."""


class CancellationToken:
    """
    Кооперативная отмена: вызывающий код ставит флаг, движок проверяет его
    перед каждым обращением к БД.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation was cancelled")


def check_cancelled(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
