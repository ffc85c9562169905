"""
Review-service gateway for the Gerrit poller.

The poller depends on four narrow capability protocols so a test double only
has to implement the calls it needs. ``GerritRestClient`` implements all four
against the Gerrit REST API using httpx.

Precondition relied on by the change poller: ``query_changes`` returns changes
sorted by last update time, most recently updated first. The REST endpoint
documents this ordering; it is not re-checked client side.
"""

import json
from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog

from . import __version__
from .exceptions import GerritAPIError
from .models import (
    AccountInfo,
    BranchInfo,
    ChangeInfo,
    CommentInfo,
    ReviewInput,
    ReviewResult,
)

logger = structlog.get_logger(__name__)

# Gerrit prefixes JSON bodies with this line to defeat XSSI.
XSSI_PREFIX = ")]}'"

USER_AGENT = f"gerrit-poller/{__version__}"


class AuthenticationService(Protocol):
    def set_cookie_auth(self, name: str, value: str) -> None:
        ...


class AccountService(Protocol):
    async def get_account(self, name: str) -> AccountInfo:
        ...


class ChangeService(Protocol):
    async def query_changes(
        self,
        query: str,
        start: int,
        limit: int,
        additional_fields: list[str] | None = None,
    ) -> list[ChangeInfo]:
        ...

    async def set_review(
        self, change_id: str, revision_id: str, review: ReviewInput
    ) -> ReviewResult:
        ...

    async def list_change_comments(
        self, change_id: str
    ) -> dict[str, list[CommentInfo]]:
        ...

    async def get_change(
        self, change_id: str, additional_fields: list[str] | None = None
    ) -> ChangeInfo:
        ...


class ProjectService(Protocol):
    async def get_branch(self, project: str, branch: str) -> BranchInfo:
        ...


class GerritRestClient:
    """
    Gerrit REST client for one instance.

    Requests are anonymous until ``set_cookie_auth`` installs a credential;
    afterwards they go through the authenticated ``/a/`` endpoints with the
    credential sent as a cookie.
    """

    def __init__(
        self,
        instance: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the REST client.

        Args:
            instance: Base URL of the Gerrit instance
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        if not instance.startswith(("http://", "https://")):
            raise ValueError(f"instance must be an http(s) URL, got {instance!r}")

        self.instance = instance
        self._cookie: tuple[str, str] | None = None
        self._client = httpx.AsyncClient(
            base_url=instance.rstrip("/") + "/",
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def authenticated(self) -> bool:
        return self._cookie is not None

    def set_cookie_auth(self, name: str, value: str) -> None:
        """Install the credential sent with every following request."""
        self._cookie = (name, value)

    async def close(self) -> None:
        await self._client.aclose()

    def _path(self, path: str) -> str:
        return f"a/{path}" if self.authenticated else path

    async def _request(
        self, method: str, path: str, json_body: dict[str, Any] | None = None
    ) -> Any:
        headers = {}
        if self._cookie is not None:
            name, value = self._cookie
            headers["Cookie"] = f"{name}={value}"

        url = self._path(path)
        try:
            response = await self._client.request(
                method, url, json=json_body, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(
                "Gerrit request failed",
                instance=self.instance,
                method=method,
                path=url,
                error=str(e),
            )
            raise GerritAPIError(f"{method} {url} failed: {e}") from e

        if response.is_error:
            raise GerritAPIError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        return self._decode(response.text)

    @staticmethod
    def _decode(body: str) -> Any:
        if body.startswith(XSSI_PREFIX):
            body = body[len(XSSI_PREFIX) :]
        body = body.strip()
        if not body:
            return None
        return json.loads(body)

    async def query_changes(
        self,
        query: str,
        start: int,
        limit: int,
        additional_fields: list[str] | None = None,
    ) -> list[ChangeInfo]:
        """
        List changes matching a query.

        ``query`` uses ``+`` as the term separator, as in the Gerrit URL
        syntax, so it is passed through without re-encoding the pluses.
        """
        params = [f"q={quote(query, safe='+:()/-~')}", f"n={limit}", f"S={start}"]
        params.extend(f"o={field}" for field in additional_fields or [])
        data = await self._request("GET", "changes/?" + "&".join(params))
        return [ChangeInfo.model_validate(item) for item in data or []]

    async def set_review(
        self, change_id: str, revision_id: str, review: ReviewInput
    ) -> ReviewResult:
        path = (
            f"changes/{quote(change_id, safe='~')}/revisions/"
            f"{quote(revision_id, safe='')}/review"
        )
        data = await self._request(
            "POST", path, json_body=review.model_dump(exclude_defaults=True)
        )
        return ReviewResult.model_validate(data or {})

    async def list_change_comments(
        self, change_id: str
    ) -> dict[str, list[CommentInfo]]:
        data = await self._request(
            "GET", f"changes/{quote(change_id, safe='~')}/comments"
        )
        return {
            path: [CommentInfo.model_validate(c) for c in comments]
            for path, comments in (data or {}).items()
        }

    async def get_change(
        self, change_id: str, additional_fields: list[str] | None = None
    ) -> ChangeInfo:
        path = f"changes/{quote(change_id, safe='~')}"
        if additional_fields:
            path += "?" + "&".join(f"o={field}" for field in additional_fields)
        data = await self._request("GET", path)
        return ChangeInfo.model_validate(data)

    async def get_branch(self, project: str, branch: str) -> BranchInfo:
        data = await self._request(
            "GET",
            f"projects/{quote(project, safe='')}/branches/{quote(branch, safe='')}",
        )
        return BranchInfo.model_validate(data)

    async def get_account(self, name: str) -> AccountInfo:
        data = await self._request("GET", f"accounts/{quote(name, safe='')}")
        return AccountInfo.model_validate(data)
