"""
JSON-RPC over HTTP. Poll-only: HTTP cannot push new heads, so trackers
built on this provider use the polling strategy.

Usage:
    async with HttpProvider("https://node.example/rpc") as provider:
        receipt = await provider.get_transaction_receipt(tx_hash)
"""

import asyncio
import itertools
from typing import Any, Optional

import aiohttp

from confirmwatch.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from confirmwatch.core.exceptions import RPCError, RPCTimeoutError, TransportError
from confirmwatch.core.provider import JsonRpcProvider
from confirmwatch.utils.logger import get_logger

logger = get_logger(__name__)


class HttpProvider(JsonRpcProvider):
    """JSON-RPC 2.0 client over aiohttp with a circuit breaker."""

    supports_subscriptions = False

    def __init__(
        self,
        rpc_endpoint: str,
        request_timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize HTTP provider.

        Args:
            rpc_endpoint: HTTP(S) JSON-RPC endpoint
            request_timeout: Total timeout per request in seconds
            circuit_breaker: Breaker to run requests through (one per
                provider is created when omitted)
            session: Externally owned aiohttp session; not closed by close()
        """
        self.rpc_endpoint = rpc_endpoint
        self.request_timeout = request_timeout
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            f"rpc:{rpc_endpoint}",
            CircuitBreakerConfig(expected_exceptions=(TransportError,)),
        )
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "HttpProvider":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this provider created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        return await self.circuit_breaker.call(self._post, method, params or [])

    async def _post(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            session = self._get_session()
            async with session.post(
                self.rpc_endpoint,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.warning(f"[RPC] {method} failed: {e}")
            raise TransportError(
                f"RPC connection error: {e}",
                details={"method": method, "endpoint": self.rpc_endpoint},
            ) from e
        except asyncio.TimeoutError as e:
            logger.warning(f"[RPC] {method} timed out after {self.request_timeout}s")
            raise RPCTimeoutError(
                f"RPC timeout: {method}",
                details={"method": method, "timeout": self.request_timeout},
            ) from e

        if not isinstance(data, dict):
            raise TransportError(
                f"Malformed RPC response for {method}",
                details={"method": method, "response": data},
            )

        if data.get("error"):
            error = data["error"]
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise RPCError(
                f"RPC error: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data"),
                details={"method": method},
            )

        logger.debug(f"[RPC] {method} ok")
        return data.get("result")
