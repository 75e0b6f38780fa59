"""
Node Client - Issues a single set/get against one store node.

The store exposes both operations as plain GET endpoints:

    GET http://<node>/set?key=<key>&value=<value>
    GET http://<node>/get?key=<key>

Any non-success outcome is raised as TransportError. Retrying is left to
the caller.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import httpx
import structlog

from .collector import RequestResult
from .errors import TransportError
from .metrics import METRICS, Timer

logger = structlog.get_logger()


class Operation(Enum):
    SET = "set"
    GET = "get"


class NodeClient(ABC):
    """Minimal interface the verifier needs from a store transport."""

    @abstractmethod
    async def send(
        self,
        node: str,
        operation: Operation,
        key: str,
        value: Optional[str] = None,
    ) -> str:
        """Return the raw response body or raise TransportError."""

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


def node_base_url(node: str) -> str:
    """Turn 'host:port' into 'http://host:port'; full URLs pass through."""
    if node.startswith(("http://", "https://")):
        return node.rstrip("/")
    return f"http://{node}"


class HttpNodeClient(NodeClient):
    """
    httpx-backed client for the store's HTTP surface.

    Every call gets its own deadline, so one stuck node never holds up
    requests to the others.
    """

    def __init__(
        self,
        request_timeout: float = 10.0,
        connect_timeout: float = 5.0,
        max_connections: int = 100,
        on_result: Optional[Callable[[RequestResult], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.request_timeout = request_timeout
        self.on_result = on_result
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=min(connect_timeout, request_timeout)),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=max_connections),
            transport=transport,
        )

    async def close(self):
        await self._http_client.aclose()

    async def send(
        self,
        node: str,
        operation: Operation,
        key: str,
        value: Optional[str] = None,
    ) -> str:
        params = {"key": key}
        if operation is Operation.SET:
            params["value"] = value if value is not None else ""
        url = f"{node_base_url(node)}/{operation.value}"

        result = RequestResult(
            operation=operation.value,
            node=node,
            key=key,
            start_time=time.time(),
            end_time=0,
        )

        try:
            with Timer() as timer:
                response = await asyncio.wait_for(
                    self._http_client.get(url, params=params),
                    timeout=self.request_timeout,
                )
            result.status_code = response.status_code
            METRICS.request_latency.labels(operation=operation.value).observe(timer.duration)

            if not response.is_success:
                raise TransportError(
                    node, operation.value, key,
                    f"HTTP {response.status_code}",
                    status_code=response.status_code,
                )
            return response.text

        except (asyncio.TimeoutError, httpx.TimeoutException):
            result.status = "timeout"
            result.error_message = f"Request timed out after {self.request_timeout}s"
            logger.warning("Request timed out", node=node, operation=operation.value, key=key)
            raise TransportError(node, operation.value, key, result.error_message) from None

        except TransportError as e:
            result.status = "error"
            result.error_message = e.message
            logger.warning("Request failed", node=node, operation=operation.value,
                           key=key, status_code=e.status_code)
            raise

        except httpx.HTTPError as e:
            result.status = "error"
            result.error_message = f"{type(e).__name__}: {e}"
            logger.warning("Request failed", node=node, operation=operation.value,
                           key=key, error=result.error_message)
            raise TransportError(node, operation.value, key, result.error_message) from e

        except asyncio.CancelledError:
            result.status = "cancelled"
            raise

        finally:
            result.end_time = time.time()
            METRICS.requests_total.labels(operation=operation.value, status=result.status).inc()
            if self.on_result:
                self.on_result(result)
