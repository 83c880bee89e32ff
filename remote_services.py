"""remote_services.py – clients for the geospatial analysis backend and the
document-retrieval answer service.

Both are plain request/response HTTP services. Any network error, timeout or
non-success status is raised as RemoteServiceFailure; callers turn it into a
tool error result. Nothing here retries.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from errors import EmptyResultPayload, RemoteServiceFailure
from models import AnalysisRequest

logger = logging.getLogger(__name__)

ANALYSIS_PATH = "/api/gee/request-geospatial-analysis"


def _error_detail(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return resp.reason or str(resp.status_code)


class AnalysisBackendClient:
    """POSTs analysis requests to the Earth-observation backend."""

    def __init__(self, base_url: str, timeout: float = 120.0) -> None:
        self._url = f"{base_url.rstrip('/')}{ANALYSIS_PATH}"
        self._timeout = timeout

    async def request_analysis(
        self,
        request: AnalysisRequest,
        forward_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post, request, forward_headers or {})

    def _post(self, request: AnalysisRequest, forward_headers: Dict[str, str]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", **forward_headers}
        try:
            resp = requests.post(self._url, json=request.to_backend_payload(), headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            logger.error("Error during analysis request: %s", e)
            raise RemoteServiceFailure("Failed to run the analysis") from e

        if not resp.ok:
            logger.error("Analysis backend returned %s: %s", resp.status_code, _error_detail(resp))
            raise RemoteServiceFailure("Failed to run the analysis", {"status": resp.status_code})

        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteServiceFailure("Failed to run the analysis: invalid response") from e

        if not isinstance(data, dict) or not data.get("mapStats"):
            logger.warning("Analysis backend returned no statistics for %s", request.function_type)
            raise EmptyResultPayload("Something went wrong! Failed to run the analysis.")
        return data


class RetrievalClient:
    """Asks the document-retrieval service to answer a query."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 60.0) -> None:
        self._url = f"{base_url.rstrip('/')}/answer"
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout

    async def answer(self, query: str) -> Any:
        return await asyncio.to_thread(self._post, query)

    def _post(self, query: str) -> Any:
        try:
            resp = requests.post(self._url, json={"query": query}, headers=self._headers, timeout=self._timeout)
        except requests.RequestException as e:
            logger.error("Error during RAG fetch: %s", e)
            raise RemoteServiceFailure("Failed to fetch RAG") from e
        if not resp.ok:
            logger.error("Retrieval service returned %s: %s", resp.status_code, _error_detail(resp))
            raise RemoteServiceFailure("Failed to fetch RAG", {"status": resp.status_code})
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteServiceFailure("Failed to fetch RAG: invalid response") from e
