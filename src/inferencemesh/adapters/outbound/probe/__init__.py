"""HTTP health probe adapter.

Implements ``HealthProbePort`` on a shared ``httpx.AsyncClient``.  Health
probes never raise for remote failures: the outcome (including the original
exception, so it can be classified) is returned as a ``ProbeResult``.
Models and registry fetches are plain reads with a short tenacity retry.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from inferencemesh.config import ProviderEndpointSettings
from inferencemesh.domain.entities import ProviderEndpoint
from inferencemesh.ports.outbound import HealthProbePort
from inferencemesh.shared.providers.types import ProbeResult

logger = structlog.get_logger(__name__)

USER_AGENT = "inferencemesh-discovery/0.1"

# Shared retry policy for metadata reads
_read_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.2, max=2),
    retry=retry_if_exception_type((httpx.NetworkError, httpx.TimeoutException)),
    reraise=True,
)


class HttpHealthProbe(HealthProbePort):
    """Probes provider endpoints over HTTP.

    ``transport`` lets tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            transport=transport,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            follow_redirects=True,
        )

    # ── HealthProbePort implementation ────────────────────────
    async def probe(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> ProbeResult:
        start = time.perf_counter()
        try:
            resp = await self._client.get(
                endpoint.health_url,
                headers=endpoint.authentication.headers(),
                timeout=timeout_s,
            )
            elapsed_ms = (time.perf_counter() - start) * 1000
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return ProbeResult(
                ok=False,
                response_time_ms=elapsed_ms,
                status_code=exc.response.status_code,
                error=f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}",
                exception=exc,
            )
        except httpx.HTTPError as exc:
            return ProbeResult(
                ok=False,
                response_time_ms=(time.perf_counter() - start) * 1000,
                error=str(exc) or type(exc).__name__,
                exception=exc,
            )

        return ProbeResult(
            ok=True,
            response_time_ms=elapsed_ms,
            status_code=resp.status_code,
            payload=_json_object(resp),
        )

    @_read_retry
    async def fetch_models(self, endpoint: ProviderEndpoint, *, timeout_s: float) -> Any:
        resp = await self._client.get(
            endpoint.models_url,
            headers=endpoint.authentication.headers(),
            timeout=timeout_s,
        )
        resp.raise_for_status()
        return resp.json()

    @_read_retry
    async def fetch_registry(self, url: str, *, timeout_s: float) -> dict[str, ProviderEndpoint]:
        resp = await self._client.get(url, timeout=timeout_s)
        resp.raise_for_status()
        return parse_registry(resp.json())

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _json_object(resp: httpx.Response) -> dict[str, Any] | None:
    """Parsed JSON object body, or None when the body is not one."""
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def parse_registry(data: Any) -> dict[str, ProviderEndpoint]:
    """Read a registry listing into an endpoint table.

    Accepts ``{"providers": {id: {...}}}``, a bare ``{id: {...}}`` mapping, or
    a list of ``{"id": ..., ...}`` entries.  Invalid entries are skipped.
    """
    if isinstance(data, dict) and "providers" in data:
        data = data["providers"]

    raw: dict[str, Any] = {}
    if isinstance(data, dict):
        raw = {str(k): v for k, v in data.items()}
    elif isinstance(data, list):
        raw = {str(e["id"]): e for e in data if isinstance(e, dict) and e.get("id")}

    table: dict[str, ProviderEndpoint] = {}
    for pid, entry in raw.items():
        try:
            table[pid] = ProviderEndpointSettings.model_validate(entry).to_endpoint()
        except ValidationError as exc:
            logger.warning("registry_entry_invalid", provider=pid, errors=exc.error_count())
    return table
