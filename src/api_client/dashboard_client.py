# src/api_client/dashboard_client.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from src.analytics.scope_filter import resolve_selection_codes, should_use_post
from src.api_client.base import ApiClientError, ApiRetryableError
from src.config import ApiClientConfig, config
from src.data_models import ScopeSelection

logger = logging.getLogger(__name__)

# Ответ-заглушка для разрезов, которые сервер ещё не умеет (HTTP 404)
PLACEHOLDER_DISTRIBUTION: Dict[str, Any] = {"distributions": [], "placeholder": True}


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


def _request_codes(code13refs: Optional[List[str]], selection: Optional[ScopeSelection]) -> List[str]:
    """
    Коды для запроса: активный выбор в фильтре важнее явного списка code13refs.
    """
    if selection is not None and selection.is_active:
        return resolve_selection_codes(selection)
    return list(code13refs or [])


class DashboardApiClient:
    """
    Async-клиент JSON API дашборда.

    Задачи:
    - ретраи по 5xx/429/timeout;
    - выбор транспорта (GET с query или POST с телом) по длине списка кодов;
    - заглушка вместо ошибки для разрезов по сегментам, которых ещё нет на сервере.
    """

    def __init__(self, api_config: Optional[ApiClientConfig] = None) -> None:
        self._config = api_config or config.api_client
        self._base_url = self._config.base_url
        self._timeout = self._config.timeout_seconds
        self._retry_conf = self._config.retry

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    async def _request_with_retries(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Базовый метод отправки запросов с ретраями по 5xx/429/timeout.
        """
        url = self._url(endpoint)
        attempt = 0
        last_exc: Exception | None = None
        response: httpx.Response | None = None

        while attempt <= self._retry_conf.max_retries:
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, json=json, params=params)

                # Повторяем при 5xx/429, если разрешено конфигом
                if response.status_code >= 500 and self._retry_conf.retry_on_5xx:
                    attempt += 1
                    if attempt > self._retry_conf.max_retries:
                        break
                    await self._sleep_backoff(attempt)
                    continue

                if response.status_code == 429 and self._retry_conf.retry_on_429:
                    attempt += 1
                    if attempt > self._retry_conf.max_retries:
                        break
                    await self._sleep_backoff(attempt)
                    continue

                return response

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_exc = exc
                if not self._retry_conf.retry_on_timeout:
                    break
                attempt += 1
                if attempt > self._retry_conf.max_retries:
                    break
                await self._sleep_backoff(attempt)

        if last_exc is not None:
            raise ApiRetryableError(f"Request to {url} failed after retries") from last_exc

        status = response.status_code if response is not None else None
        raise ApiRetryableError(f"Request to {url} failed with status {status}", status_code=status)

    async def _sleep_backoff(self, attempt: int) -> None:
        delay = self._retry_conf.backoff_factor * attempt
        await asyncio.sleep(delay)

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            message = response.text
            try:
                message = response.json().get("error", message)
            except ValueError:
                pass
            raise ApiClientError(
                f"API returned HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ApiClientError("Failed to parse API response as JSON") from exc

    async def sellin(
        self,
        start_date: str,
        end_date: str,
        comparison_start_date: Optional[str] = None,
        comparison_end_date: Optional[str] = None,
        pharmacy_ids: Optional[List[str]] = None,
        code13refs: Optional[List[str]] = None,
        selection: Optional[ScopeSelection] = None,
    ) -> Dict[str, Any]:
        payload = _compact(
            {
                "startDate": start_date,
                "endDate": end_date,
                "comparisonStartDate": comparison_start_date,
                "comparisonEndDate": comparison_end_date,
                "pharmacyIds": pharmacy_ids or [],
                "code13refs": _request_codes(code13refs, selection),
            }
        )
        response = await self._request_with_retries("POST", "/api/sales/sellin", json=payload)
        return self._decode(response)

    async def segment_distribution(
        self,
        start_date: str,
        end_date: str,
        segment_type: str = "universe",
        pharmacy_ids: Optional[List[str]] = None,
        code13refs: Optional[List[str]] = None,
        selection: Optional[ScopeSelection] = None,
    ) -> Dict[str, Any]:
        """
        Больше post_threshold кодов - POST с телом, иначе GET с повторяющимися параметрами.
        Выбор в фильтре сначала сводится к списку кодов, транспорт решается уже по нему.
        """
        pharmacy_ids = pharmacy_ids or []
        code13refs = _request_codes(code13refs, selection)
        payload = {
            "startDate": start_date,
            "endDate": end_date,
            "segmentType": segment_type,
            "pharmacyIds": pharmacy_ids,
            "code13refs": code13refs,
        }

        if should_use_post(code13refs, self._config.post_threshold):
            logger.debug("Sending %s codes in request body", len(code13refs))
            response = await self._request_with_retries(
                "POST", "/api/sales/segment-distribution", json=payload
            )
        else:
            response = await self._request_with_retries(
                "GET", "/api/sales/segment-distribution", params=payload
            )
        return self._decode(response)

    async def segment_evolution(
        self,
        start_date: str,
        end_date: str,
        comparison_start_date: str,
        comparison_end_date: str,
        segment_type: str = "universe",
        pharmacy_ids: Optional[List[str]] = None,
        code13refs: Optional[List[str]] = None,
        selection: Optional[ScopeSelection] = None,
    ) -> Dict[str, Any]:
        payload = {
            "startDate": start_date,
            "endDate": end_date,
            "comparisonStartDate": comparison_start_date,
            "comparisonEndDate": comparison_end_date,
            "segmentType": segment_type,
            "pharmacyIds": pharmacy_ids or [],
            "code13refs": _request_codes(code13refs, selection),
        }
        response = await self._request_with_retries("POST", "/api/sales/segment-evolution", json=payload)
        return self._decode(response)

    async def _segment_breakdown_or_placeholder(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request_with_retries("POST", endpoint, json=payload)
        if response.status_code == 404:
            # Разрез ещё не реализован на сервере - показываем заглушку, а не ошибку
            logger.warning("%s is not available yet, using placeholder data", endpoint)
            return dict(PLACEHOLDER_DISTRIBUTION)
        return self._decode(response)

    async def sellin_by_segment(
        self,
        start_date: str,
        end_date: str,
        segment_type: str = "universe",
        pharmacy_ids: Optional[List[str]] = None,
        code13refs: Optional[List[str]] = None,
        selection: Optional[ScopeSelection] = None,
    ) -> Dict[str, Any]:
        payload = {
            "startDate": start_date,
            "endDate": end_date,
            "segmentType": segment_type,
            "pharmacyIds": pharmacy_ids or [],
            "code13refs": _request_codes(code13refs, selection),
        }
        return await self._segment_breakdown_or_placeholder("/api/sellin/by-segment", payload)

    async def stock_by_segment(
        self,
        end_date: str,
        segment_type: str = "universe",
        start_date: Optional[str] = None,
        pharmacy_ids: Optional[List[str]] = None,
        code13refs: Optional[List[str]] = None,
        selection: Optional[ScopeSelection] = None,
    ) -> Dict[str, Any]:
        payload = _compact(
            {
                "startDate": start_date,
                "endDate": end_date,
                "segmentType": segment_type,
                "pharmacyIds": pharmacy_ids or [],
                "code13refs": _request_codes(code13refs, selection),
            }
        )
        return await self._segment_breakdown_or_placeholder("/api/stock/by-segment", payload)
