# src/api_client/base.py
from __future__ import annotations


class ApiClientError(Exception):
    """Базовая ошибка клиента API дашборда."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiRetryableError(ApiClientError):
    """Ошибки, при которых можно безопасно повторить запрос (5xx, 429, timeout)."""
