from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger("claudetasks.api_client")

DEFAULT_URL = "http://127.0.0.1:7680"


class TaskApiError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class TaskApiClient:
    """Small synchronous client for a running claudetasks server."""

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _request(self, method: str, path: str, json: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            resp = client.request(method, path, json=json)
        try:
            payload = resp.json()
        except ValueError:
            payload = {"error": resp.text[:500]}
        if resp.status_code >= 400:
            message = payload.get("error") if isinstance(payload, dict) else None
            logger.debug("%s %s failed: %s %s", method, path, resp.status_code, payload)
            raise TaskApiError(resp.status_code, message or resp.reason_phrase)
        return payload

    def submit(self, task: str, model: Optional[str] = None) -> dict[str, Any]:
        body: dict[str, Any] = {"task": task}
        if model:
            body["model"] = model
        return self._request("POST", "/tasks", json=body)

    def list_tasks(self) -> dict[str, Any]:
        return self._request("GET", "/tasks")

    def get_task(self, task_id: str) -> dict[str, Any]:
        return self._request("GET", f"/tasks/{task_id}")

    def list_files(self, task_id: str) -> dict[str, Any]:
        return self._request("GET", f"/tasks/{task_id}/files")

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")
