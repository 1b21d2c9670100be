"""
GitHub REST v3 client for the run lifecycle.

Covers exactly what a run needs: list branches, read the tree and raw files
at a ref, resolve the branch head, create a branch, commit files through
the contents API and open a pull request.

Status mapping:
    401/403/404/422 and other 4xx -> ExternalServiceRejection (run fails, no retry)
    429, 5xx and transport errors  -> retried, then TransientInfrastructureError

Dependencies: httpx, tenacity
System role: Source hosting boundary for RunLifecycleDriver
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from testgen.configs.source_host import SourceHostSettings
from testgen.core.exceptions import ExternalServiceRejection, TransientInfrastructureError

logger = logging.getLogger(__name__)

SERVICE = "github"

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class TreeEntry:
    """One blob in a repository tree."""

    path: str
    size: int
    sha: str | None = None


@dataclass(frozen=True)
class PullRequest:
    number: int
    url: str
    branch: str


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


class GitHubClient:
    """Async GitHub client authenticated with an opaque bearer token."""

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize GitHub client.

        Args:
            token: Bearer credential carried on the run (may be None for public repos)
            api_url: REST API base URL
            timeout_seconds: Per-request timeout
            max_retries: Retries after the first attempt for transient errors
            http_client: Pre-built client (tests pass one with a MockTransport)
            sleep: Awaitable sleep used between retries
        """
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._max_retries = max_retries
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=timeout_seconds,
            headers=headers,
        )
        if http_client is not None:
            self._client.headers.update(headers)

    @classmethod
    def from_settings(cls, settings: SourceHostSettings, token: str | None) -> "GitHubClient":
        return cls(
            token=token,
            api_url=settings.api_url,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request with retry and map failures to the pipeline taxonomy.

        Raises:
            ExternalServiceRejection: Non-retryable 4xx
            TransientInfrastructureError: Transport errors or 5xx/429 past the retry budget
        """

        def before_sleep(retry_state) -> None:
            logger.warning(
                f"{__name__}:_request - {method} {path} retry "
                f"{retry_state.attempt_number}/{self._max_retries}: {retry_state.outcome.exception()}"
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries + 1),
                wait=wait_exponential(multiplier=1, min=0, max=30),
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
                sleep=self._sleep,
                before_sleep=before_sleep,
                reraise=True,
            ):
                with attempt:
                    response = await self._client.request(method, path, **kwargs)
                    if response.status_code == 429 or response.status_code >= 500:
                        raise _RetryableStatus(response)
        except _RetryableStatus as e:
            raise TransientInfrastructureError(
                f"GitHub {method} {path} failed with HTTP {e.response.status_code}",
                service=SERVICE,
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.TransportError as e:
            raise TransientInfrastructureError(
                f"GitHub {method} {path} unreachable: {e}",
                service=SERVICE,
            ) from e

        if response.is_success:
            return response

        try:
            body = response.json()
            reason = body.get("message", "") if isinstance(body, dict) else str(body)
        except ValueError:
            reason = response.text[:200]
        logger.error(f"{__name__}:_request - {method} {path} rejected: {response.status_code} {reason}")
        raise ExternalServiceRejection(
            f"GitHub rejected {method} {path}: {reason or response.reason_phrase}",
            service=SERVICE,
            status_code=response.status_code,
        )

    async def list_branches(self, repository: str) -> list[str]:
        response = await self._request("GET", f"/repos/{repository}/branches", params={"per_page": 100})
        return [branch["name"] for branch in response.json()]

    async def get_branch_head_sha(self, repository: str, branch: str) -> str:
        """Return the commit sha at the tip of branch."""
        response = await self._request("GET", f"/repos/{repository}/branches/{quote(branch, safe='')}")
        return response.json()["commit"]["sha"]

    async def get_tree(self, repository: str, ref: str) -> list[TreeEntry]:
        """
        List every blob reachable from ref.

        Args:
            repository: owner/name
            ref: Branch name or commit sha

        Returns:
            list[TreeEntry]: Files only (tree and submodule entries dropped)
        """
        response = await self._request(
            "GET",
            f"/repos/{repository}/git/trees/{quote(ref, safe='')}",
            params={"recursive": "1"},
        )
        payload = response.json()
        if payload.get("truncated"):
            logger.warning(f"{__name__}:get_tree - Tree for {repository}@{ref} truncated by GitHub")
        return [
            TreeEntry(path=item["path"], size=int(item.get("size", 0)), sha=item.get("sha"))
            for item in payload.get("tree", [])
            if item.get("type") == "blob"
        ]

    async def get_file_content(self, repository: str, path: str, ref: str) -> str:
        """Download a file's raw text at ref."""
        response = await self._request(
            "GET",
            f"/repos/{repository}/contents/{quote(path)}",
            params={"ref": ref},
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        return response.text

    async def create_branch(self, repository: str, branch: str, sha: str) -> None:
        await self._request(
            "POST",
            f"/repos/{repository}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        logger.info(f"{__name__}:create_branch - Created {branch} at {sha[:7]} in {repository}")

    async def put_file(
        self,
        repository: str,
        path: str,
        content: str,
        message: str,
        branch: str,
    ) -> str:
        """
        Create or overwrite a file on branch through the contents API.

        Returns:
            str: Commit sha of the new commit
        """
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        response = await self._request(
            "PUT",
            f"/repos/{repository}/contents/{quote(path)}",
            json={"message": message, "content": encoded, "branch": branch},
        )
        return response.json().get("commit", {}).get("sha", "")

    async def open_pull_request(
        self,
        repository: str,
        head: str,
        base: str,
        title: str,
        body: str = "",
    ) -> PullRequest:
        response = await self._request(
            "POST",
            f"/repos/{repository}/pulls",
            json={"title": title, "head": head, "base": base, "body": body},
        )
        payload = response.json()
        logger.info(f"{__name__}:open_pull_request - Opened PR #{payload['number']} in {repository}")
        return PullRequest(number=payload["number"], url=payload.get("html_url", ""), branch=head)
