"""
Provider query executors.

The engine is provider-agnostic: it hands a QueryDescriptor to an executor
and receives either rows or an error.  ``HttpProviderExecutor`` talks to the
backend gateway that holds provider credentials:

  google_ads -> POST /google-ads/query     {customerId, query}
  meta_ads   -> POST /meta-ads/insights    {accountId, startDate, endDate, level, ...}

Both answer ``{"success": bool, "results"|"insights": [...], "error": str}``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from src.engine.compiler import QueryDescriptor
from src.engine.normalizer import meta_request_params
from src.semantic.metric_catalog import MetricCatalog
from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ProviderResult:
    success: bool
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "ProviderResult":
        return cls(success=False, error=error)


class ProviderQueryExecutor(Protocol):
    def execute(self, account_id: str, descriptor: QueryDescriptor, provider: str) -> ProviderResult: ...


class HttpProviderExecutor:
    """Executes descriptors through the provider gateway over HTTP."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        auth_token: str | None = None,
        transport: httpx.BaseTransport | None = None,
        catalog: MetricCatalog | None = None,
    ):
        settings = get_settings()
        self._base_url = base_url or settings.provider_gateway_url
        self._timeout = timeout if timeout is not None else settings.provider_timeout_seconds
        self._auth_token = auth_token
        self._transport = transport
        self._catalog = catalog

    def _payload(self, account_id: str, descriptor: QueryDescriptor, provider: str) -> tuple[str, dict[str, Any], str]:
        if provider == "meta_ads":
            params = meta_request_params(descriptor.dimension, self._catalog)
            payload = {
                "accountId": account_id,
                "startDate": descriptor.filter.window.start.isoformat(),
                "endDate": descriptor.filter.window.end.isoformat(),
                "level": params["level"],
                "timeIncrement": params["time_increment"],
                "breakdowns": params["breakdowns"],
                "fields": [f.split(".", 1)[-1] for f in descriptor.projection if f.startswith("metrics.")],
                "campaignIds": list(descriptor.filter.campaign_ids or []),
            }
            return "/meta-ads/insights", payload, "insights"
        if provider == "google_ads":
            return "/google-ads/query", {"customerId": account_id, "query": descriptor.to_gaql()}, "results"
        raise ValueError(f"Provider '{provider}' is not supported")

    def execute(self, account_id: str, descriptor: QueryDescriptor, provider: str = "google_ads") -> ProviderResult:
        path, payload, rows_key = self._payload(account_id, descriptor, provider)
        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}

        logger.info("Provider call provider=%s account=%s resource=%s", provider, account_id, descriptor.resource)
        try:
            with httpx.Client(base_url=self._base_url, timeout=self._timeout, transport=self._transport) as client:
                response = client.post(path, json=payload, headers=headers)
        except httpx.RequestError as exc:
            logger.warning("Provider gateway unreachable: %s", exc)
            return ProviderResult.failed(f"Provider gateway unreachable: {exc}")

        if response.status_code >= 400:
            return ProviderResult.failed(f"Provider gateway returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            return ProviderResult.failed("Provider gateway returned a non-JSON body")

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            return ProviderResult.failed(error or "Provider reported failure")

        rows = body.get(rows_key)
        if not isinstance(rows, list):
            return ProviderResult.failed(f"Provider response has no '{rows_key}' list")
        return ProviderResult(success=True, rows=rows)
