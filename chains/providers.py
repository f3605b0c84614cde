"""
chains/providers.py - Solana JSON-RPC transport with endpoint failover.

Endpoints are tried in configured order for every call. An endpoint that
times out, returns a non-2xx status, sends unparsable JSON or answers with
a JSON-RPC error counts as failed for that call and the next one is tried.
When none answers, RPCError carries the last failure; if that failure was a
JSON-RPC error object it is kept verbatim in details["rpc_error"] so the
ledger client can tell a rejected transaction from an unreachable node.
"""

import os
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from core.logging import get_logger
from core.exceptions import RPCError
from core.time import now_ms

logger = get_logger(__name__)

load_dotenv()

API_KEY_PLACEHOLDER = "${HELIUS_API_KEY}"


@dataclass
class RPCStats:
    """Per-endpoint counters."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: Optional[str] = None
    last_success_ts: Optional[int] = None

    def record_success(self, latency_ms: int) -> None:
        self.successful_requests += 1
        self.total_latency_ms += latency_ms
        self.last_success_ts = now_ms()

    def record_failure(self, error: str) -> None:
        self.failed_requests += 1
        self.last_error = error

    @property
    def avg_latency_ms(self) -> int:
        return self.total_latency_ms // self.successful_requests if self.successful_requests else 0

    @property
    def success_rate(self) -> float:
        return self.successful_requests / self.total_requests if self.total_requests else 0.0

    def to_dict(self) -> dict:
        return {
            "total_requests": self.total_requests,
            "success_rate": round(self.success_rate, 3),
            "avg_latency_ms": self.avg_latency_ms,
            "last_error": self.last_error,
        }


@dataclass
class RPCResponse:
    """Successful JSON-RPC result and where it came from."""
    result: Any
    latency_ms: int
    endpoint_used: str


class _EndpointFailure(Exception):
    """One endpoint failed one call; never escapes RPCProvider."""

    def __init__(self, message: str, rpc_error: Optional[dict] = None):
        super().__init__(message)
        self.rpc_error = rpc_error


def resolve_endpoints(urls: list[str], api_key: str) -> list[str]:
    """Fill the API key placeholder; endpoints needing a missing key are dropped."""
    resolved = []
    for url in urls:
        if API_KEY_PLACEHOLDER in url:
            if not api_key:
                continue
            url = url.replace(API_KEY_PLACEHOLDER, api_key)
        resolved.append(url)
    return resolved


class RPCProvider:
    """
    JSON-RPC client over an ordered list of endpoints.

    Usage:
        provider = RPCProvider(config.solana.rpc_urls, timeout_seconds=10)
        response = await provider.call("getSlot", [{"commitment": "confirmed"}])
    """

    def __init__(
        self,
        rpc_urls: list[str],
        timeout_seconds: int = 10,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.rpc_urls = resolve_endpoints(rpc_urls, os.getenv("HELIUS_API_KEY", ""))
        self.stats: dict[str, RPCStats] = {url: RPCStats(url=url) for url in self.rpc_urls}
        self._client = client
        self._request_id = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, method: str, params: list) -> Any:
        """Single attempt against one endpoint; returns the JSON-RPC result."""
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = await self.client.post(url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.TimeoutException as e:
            raise _EndpointFailure(f"Timeout after {self.timeout_seconds}s") from e
        except (httpx.HTTPError, ValueError) as e:
            raise _EndpointFailure(str(e)) from e

        error = body.get("error") if isinstance(body, dict) else None
        if error is not None:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise _EndpointFailure(error.get("message", str(error)), rpc_error=error)
        return body.get("result") if isinstance(body, dict) else None

    async def call(self, method: str, params: Optional[list] = None) -> RPCResponse:
        """
        Call method on the first endpoint that answers.

        Raises:
            RPCError: No endpoints configured, or every endpoint failed
        """
        if not self.rpc_urls:
            raise RPCError("No RPC endpoints configured", details={"method": method})

        last: Optional[_EndpointFailure] = None
        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1
            started = now_ms()
            try:
                result = await self._post(url, method, params or [])
            except _EndpointFailure as failure:
                stats.record_failure(str(failure))
                last = failure
                logger.debug(
                    f"RPC {method} failed on {url}: {failure}",
                    extra={"context": {"method": method, "endpoint": url}},
                )
                continue

            latency_ms = now_ms() - started
            stats.record_success(latency_ms)
            return RPCResponse(result=result, latency_ms=latency_ms, endpoint_used=url)

        raise RPCError(
            f"All RPC endpoints failed for {method}: {last}",
            details={
                "method": method,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last) if last else None,
                "rpc_error": last.rpc_error if last else None,
            },
        )

    def get_stats_summary(self) -> dict:
        return {url: s.to_dict() for url, s in self.stats.items()}
