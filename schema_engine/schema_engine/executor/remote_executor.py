"""HTTP executor for the hosted database query API.

Posts one statement per request to
``{base_url}/accounts/{account_id}/d1/database/{database_id}/query`` and
returns the first result set.  Transport failures are classified so that
callers can tell retryable failures from rejected statements.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from schema_engine.config import Settings
from schema_engine.errors import SchemaEngineError, TransientIOError
from schema_engine.models.schema import QueryResult

logger = logging.getLogger(__name__)


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class RemoteExecutor:
    """Execute statements through the hosted query API.

    Implements the :class:`~schema_engine.executor.base.QueryExecutor`
    protocol.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://api.cloudflare.com/client/v4``.
    account_id:
        Account owning the databases.
    api_token:
        Bearer token with query permission.
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-built ``httpx.Client`` (tests inject one with a
        ``MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        account_id: str,
        api_token: str,
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._account_id = account_id
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoteExecutor:
        if not settings.is_remote_configured():
            raise SchemaEngineError("Remote execution requires SCHEMA_ENGINE_ACCOUNT_ID and SCHEMA_ENGINE_API_TOKEN")
        assert settings.account_id is not None and settings.api_token is not None  # noqa: S101
        return cls(
            settings.api_base_url,
            settings.account_id,
            settings.api_token.get_secret_value(),
            timeout=settings.request_timeout,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> RemoteExecutor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    def execute(
        self,
        database_id: str,
        sql: str,
        params: Sequence[Any] | None = None,
    ) -> QueryResult:
        url = f"{self._base_url}/accounts/{self._account_id}/d1/database/{database_id}/query"
        body: dict[str, Any] = {"sql": sql}
        if params:
            body["params"] = list(params)

        try:
            response = self._client.post(url, headers=self._headers, json=body)
        except httpx.TransportError as exc:
            raise TransientIOError(f"Query API unreachable: {exc}") from exc

        if _is_transient_status(response.status_code):
            logger.warning("Query API returned %d for database %s", response.status_code, database_id)
            raise TransientIOError(
                f"Query failed: {response.status_code}",
                status_code=response.status_code,
            )
        if response.is_error:
            logger.error("Query API error for database %s: %s", database_id, response.text)
            raise SchemaEngineError(f"Query failed: {response.status_code}: {_error_detail(response)}")

        payload = response.json()
        if not payload.get("success", True):
            raise SchemaEngineError(f"Query failed: {_error_detail(response)}")

        results = payload.get("result") or []
        if not results:
            return QueryResult()
        first = results[0]
        return QueryResult(results=first.get("results") or [], meta=first.get("meta") or {})


def _error_detail(response: httpx.Response) -> str:
    try:
        errors = response.json().get("errors") or []
    except ValueError:
        return response.text
    messages = [str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors]
    return "; ".join(messages) or response.text
