"""
External tool (MCP server) client.

Invokes named operations on the tool server over HTTP:
    POST /tools/execute          {tool, parameters, options}
    GET  /tools/list
    GET  /tools/{name}/schema
    GET  /health

Connection errors, timeouts, 5xx and 429 are retried with exponential
backoff (retry_delay * 2 ** n). Tool failures come back as an unsuccessful
ToolResult; callers that must abort on failure pass raise_on_failure, which
raises ExternalServiceRejection for other 4xx responses and
TransientInfrastructureError for everything else.

Dependencies: httpx, tenacity
System role: Tool access for the worker loop (diff, CI, coverage, notify)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from testgen.configs.tools import ToolSettings
from testgen.core.exceptions import ExternalServiceRejection, TransientInfrastructureError

logger = logging.getLogger(__name__)

USER_AGENT = "testgen-worker/0.1"

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    success: bool
    data: Any = None
    error: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class ToolCall:
    """One entry of a sequential or parallel batch."""

    tool: str
    parameters: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)


class _RetryableStatus(Exception):
    """Internal marker for responses worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code < 600


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ToolClient:
    """HTTP client for the tool server with retry on transient errors."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        health_timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize tool client.

        Args:
            base_url: Tool server base URL
            timeout_seconds: Per-request timeout
            max_retries: Retries after the first attempt
            retry_delay_seconds: Base delay for exponential backoff
            health_timeout_seconds: Timeout for health checks
            http_client: Pre-built client (tests pass one with a MockTransport)
            sleep: Awaitable sleep used between retries
        """
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_delay_seconds = retry_delay_seconds
        self._health_timeout_seconds = health_timeout_seconds
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_seconds,
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
        )

    @classmethod
    def from_settings(cls, settings: ToolSettings) -> "ToolClient":
        return cls(
            base_url=settings.server_url,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay_seconds=settings.retry_delay_seconds,
            health_timeout_seconds=settings.health_timeout_seconds,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ToolClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        label: str,
        **kwargs: Any,
    ) -> tuple[httpx.Response, int]:
        """
        Send a request, retrying transport errors and retryable statuses.

        Returns:
            tuple: (final response, retries used)

        Raises:
            httpx.TransportError: When transport errors persist past the retry budget
        """
        retries = 0

        def before_sleep(retry_state) -> None:
            nonlocal retries
            retries = retry_state.attempt_number
            logger.warning(
                f"{__name__}:{label} - Retry {retries}/{self._max_retries} after "
                f"{retry_state.outcome.exception()}"
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=self._retry_delay_seconds, min=0),
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
                sleep=self._sleep,
                before_sleep=before_sleep,
                reraise=True,
            ):
                with attempt:
                    response = await self._client.request(method, path, **kwargs)
                    if _is_retryable_status(response.status_code):
                        raise _RetryableStatus(response)
        except _RetryableStatus as e:
            return e.response, retries
        return response, retries

    @staticmethod
    def _error_from_response(response: httpx.Response) -> dict[str, Any]:
        try:
            details = response.json()
        except ValueError:
            details = response.text[:500]
        return {
            "message": f"Tool server returned HTTP {response.status_code}",
            "code": "HTTP_ERROR",
            "status": response.status_code,
            "details": details,
        }

    async def execute(
        self,
        tool: str,
        parameters: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        raise_on_failure: bool = False,
    ) -> ToolResult:
        """
        Execute a named tool.

        Args:
            tool: Tool name (get_diff, run_ci, get_coverage, notify, ...)
            parameters: Tool parameters
            options: Execution options forwarded to the server
            raise_on_failure: Raise instead of returning an unsuccessful result

        Returns:
            ToolResult: success with server data, or failure with error details

        Raises:
            ExternalServiceRejection: raise_on_failure and the server refused the call (4xx)
            TransientInfrastructureError: raise_on_failure and the call failed otherwise
        """
        options = dict(options or {})
        timeout = min(float(options.get("timeout", self._timeout_seconds)), self._timeout_seconds)
        options["timeout"] = timeout
        started = time.perf_counter()

        try:
            response, retries = await self._request_with_retry(
                "POST",
                "/tools/execute",
                f"execute[{tool}]",
                json={"tool": tool, "parameters": parameters or {}, "options": options},
                timeout=timeout,
            )
        except httpx.TransportError as e:
            result = ToolResult(
                success=False,
                error={"message": str(e) or type(e).__name__, "code": type(e).__name__},
                metadata={"tool": tool, "retry_count": self._max_retries, "timestamp": _now()},
            )
        else:
            metadata = {
                "tool": tool,
                "retry_count": retries,
                "execution_time": response.headers.get("x-execution-time"),
                "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
                "timestamp": _now(),
            }
            if response.is_success:
                result = ToolResult(success=True, data=response.json(), metadata=metadata)
            else:
                result = ToolResult(
                    success=False,
                    error=self._error_from_response(response),
                    metadata=metadata,
                )

        if result.success:
            logger.info(f"{__name__}:execute - Tool '{tool}' succeeded")
        else:
            logger.error(f"{__name__}:execute - Tool '{tool}' failed: {result.error}")
            if raise_on_failure:
                status = result.error.get("status")
                if isinstance(status, int) and 400 <= status < 500 and not _is_retryable_status(status):
                    raise ExternalServiceRejection(
                        f"Tool '{tool}' rejected: {result.error.get('message')}",
                        service="mcp",
                        status_code=status,
                        details={"tool": tool, "error": result.error},
                    )
                raise TransientInfrastructureError(
                    f"Tool '{tool}' failed: {result.error.get('message')}",
                    service="mcp",
                    details={"tool": tool, "error": result.error},
                )
        return result

    async def execute_sequentially(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run calls in order, stopping after the first failure."""
        results = []
        for call in calls:
            result = await self.execute(call.tool, call.parameters, call.options)
            results.append(result)
            if not result.success:
                break
        return results

    async def execute_in_parallel(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run calls concurrently; results keep call order."""
        return list(
            await asyncio.gather(
                *(self.execute(call.tool, call.parameters, call.options) for call in calls)
            )
        )

    async def list_tools(self) -> ToolResult:
        try:
            response = await self._client.get("/tools/list")
        except httpx.TransportError as e:
            return ToolResult(success=False, error={"message": str(e), "code": type(e).__name__})
        if not response.is_success:
            return ToolResult(success=False, error=self._error_from_response(response))
        return ToolResult(
            success=True,
            data=response.json().get("tools", []),
            metadata={"timestamp": _now()},
        )

    async def get_tool_schema(self, tool: str) -> ToolResult:
        try:
            response = await self._client.get(f"/tools/{tool}/schema")
        except httpx.TransportError as e:
            return ToolResult(success=False, error={"message": str(e), "code": type(e).__name__})
        if not response.is_success:
            return ToolResult(success=False, error=self._error_from_response(response))
        return ToolResult(success=True, data=response.json(), metadata={"tool": tool, "timestamp": _now()})

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/health", timeout=self._health_timeout_seconds)
        except httpx.HTTPError as e:
            logger.warning(f"{__name__}:health_check - Tool server unreachable: {e}")
            return False
        return response.status_code == 200


class ToolHelpers:
    """Typed shortcuts for the tools the pipeline uses."""

    def __init__(self, client: ToolClient) -> None:
        self._client = client

    @property
    def client(self) -> ToolClient:
        return self._client

    async def get_diff(self, repository: str, commit_id: str, raise_on_failure: bool = False) -> ToolResult:
        return await self._client.execute(
            "get_diff",
            {"repository": repository, "commit_id": commit_id},
            raise_on_failure=raise_on_failure,
        )

    async def run_ci(
        self,
        project_id: Any,
        test_plan: dict[str, Any],
        raise_on_failure: bool = False,
    ) -> ToolResult:
        return await self._client.execute(
            "run_ci",
            {"project_id": project_id, "test_plan": test_plan},
            raise_on_failure=raise_on_failure,
        )

    async def get_coverage(self, report_id: str, raise_on_failure: bool = False) -> ToolResult:
        return await self._client.execute(
            "get_coverage",
            {"report_id": report_id},
            raise_on_failure=raise_on_failure,
        )

    async def notify(self, channel: str, message: str, **options: Any) -> ToolResult:
        return await self._client.execute(
            "notify",
            {"channel": channel, "message": message, **options},
        )
