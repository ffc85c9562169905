"""
Pytest configuration and fixtures for Gerrit poller tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from gerrit_poller.client import GerritClient
from gerrit_poller.exceptions import GerritAPIError
from gerrit_poller.metrics import QueryResultMetrics
from gerrit_poller.models import (
    AccountInfo,
    BranchInfo,
    ChangeInfo,
    ChangeMessageInfo,
    CommentInfo,
    ReviewInput,
    ReviewResult,
    RevisionInfo,
)

INSTANCE = "https://review.example.org"
OTHER_INSTANCE = "https://gerrit.example.com"

# Watermark used throughout the tests.
T = datetime(2024, 1, 15, 12, 0, 0, tzinfo=UTC)


def at(seconds: int) -> datetime:
    """Timestamp ``seconds`` away from the watermark."""
    return T + timedelta(seconds=seconds)


def make_change(
    number: int,
    status: str = "NEW",
    updated: datetime | None = None,
    submitted: datetime | None = None,
    created: datetime | None = None,
    revision_number: int = 1,
    messages: list[ChangeMessageInfo] | None = None,
    project: str = "test-project",
    with_revision: bool = True,
) -> ChangeInfo:
    """Build a change whose current revision is ``rev-<number>``."""
    revision = f"rev-{number}"
    revisions = {}
    if with_revision:
        revisions[revision] = RevisionInfo(
            number=revision_number, created=created or at(-3600)
        )
    return ChangeInfo(
        id=f"{project}~master~I{number:04d}",
        number=number,
        project=project,
        branch="master",
        status=status,
        updated=updated or at(60),
        submitted=submitted,
        current_revision=revision,
        revisions=revisions,
        messages=messages or [],
    )


def make_message(date: datetime, revision_number: int = 1, text: str = "msg"):
    return ChangeMessageInfo(date=date, message=text, revision_number=revision_number)


def make_comment(updated: datetime, patch_set: int = 1, text: str = "comment"):
    return CommentInfo(updated=updated, message=text, patch_set=patch_set)


class FakeGateway:
    """
    In-memory gateway implementing all four capability protocols.

    ``pages`` maps a project name to the pages its change query returns, in
    order. Queries past the last page return an empty page.
    """

    def __init__(self, instance: str = INSTANCE) -> None:
        self.instance = instance
        self.pages: dict[str, list[list[ChangeInfo]]] = {}
        self.query_errors: dict[str, Exception] = {}
        self.comments: dict[str, dict[str, list[CommentInfo]]] = {}
        self.comment_errors: dict[str, Exception] = {}
        self.changes: dict[str, ChangeInfo] = {}
        self.branches: dict[tuple[str, str], str] = {}
        self.account = AccountInfo(account_id=1000, name="Poller Bot")

        self.query_calls: list[dict[str, Any]] = []
        self.cookie_calls: list[tuple[str, str]] = []
        self.review_calls: list[tuple[str, str, ReviewInput]] = []
        self.account_calls: list[str] = []
        self.closed = False

    @staticmethod
    def project_of(query: str) -> str:
        return query.rsplit("project:", 1)[1]

    def set_cookie_auth(self, name: str, value: str) -> None:
        self.cookie_calls.append((name, value))

    async def query_changes(
        self,
        query: str,
        start: int,
        limit: int,
        additional_fields: list[str] | None = None,
    ) -> list[ChangeInfo]:
        self.query_calls.append(
            {
                "query": query,
                "start": start,
                "limit": limit,
                "additional_fields": additional_fields,
            }
        )
        project = self.project_of(query)
        if project in self.query_errors:
            raise self.query_errors[project]

        offset = 0
        for page in self.pages.get(project, []):
            if offset == start:
                return [change.model_copy(deep=True) for change in page]
            offset += len(page)
        return []

    async def list_change_comments(
        self, change_id: str
    ) -> dict[str, list[CommentInfo]]:
        if change_id in self.comment_errors:
            raise self.comment_errors[change_id]
        return self.comments.get(change_id, {})

    async def set_review(
        self, change_id: str, revision_id: str, review: ReviewInput
    ) -> ReviewResult:
        self.review_calls.append((change_id, revision_id, review))
        return ReviewResult(labels=review.labels)

    async def get_change(
        self, change_id: str, additional_fields: list[str] | None = None
    ) -> ChangeInfo:
        if change_id not in self.changes:
            raise GerritAPIError(
                f"GET changes/{change_id} returned 404",
                status_code=404,
                response_body="Not found: " + change_id,
            )
        return self.changes[change_id]

    async def get_branch(self, project: str, branch: str) -> BranchInfo:
        if (project, branch) not in self.branches:
            raise GerritAPIError("branch not found", status_code=404)
        return BranchInfo(
            ref=f"refs/heads/{branch}", revision=self.branches[(project, branch)]
        )

    async def get_account(self, name: str) -> AccountInfo:
        self.account_calls.append(name)
        return self.account

    async def close(self) -> None:
        self.closed = True


class GatewayFactory:
    """Gateway factory that remembers every gateway it built."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.gateways: dict[str, FakeGateway] = {}
        self.created: list[str] = []

    def __call__(self, instance: str) -> FakeGateway:
        self.created.append(instance)
        if instance in self.failing:
            raise ValueError(f"cannot create client for {instance}")
        gateway = self.gateways.get(instance)
        if gateway is None:
            gateway = FakeGateway(instance)
            self.gateways[instance] = gateway
        return gateway


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def gateway_factory() -> GatewayFactory:
    return GatewayFactory()


@pytest.fixture
def metrics() -> QueryResultMetrics:
    return QueryResultMetrics()


@pytest.fixture
def client(gateway_factory: GatewayFactory, metrics: QueryResultMetrics) -> GerritClient:
    """Client watching two projects on one instance."""
    return GerritClient(
        {INSTANCE: {"test-project": None, "other-project": None}},
        gateway_factory=gateway_factory,
        metrics=metrics,
    )
