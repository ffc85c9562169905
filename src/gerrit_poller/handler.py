"""
Per-instance handler.

Binds one Gerrit instance's watched projects to its gateway services and runs
the change poller across them.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from .gateway import AccountService, AuthenticationService, ChangeService, ProjectService
from .metrics import MetricsSink
from .models import ChangeInfo, ProjectFilter, QueryResult
from .poller import query_changes_for_project, query_strings_from_filter

logger = structlog.get_logger(__name__)


class InstanceHandler:
    """Holds the services and watched projects for one Gerrit instance."""

    def __init__(
        self,
        instance: str,
        projects: dict[str, ProjectFilter | None],
        auth_service: AuthenticationService,
        account_service: AccountService,
        change_service: ChangeService,
        project_service: ProjectService,
        metrics: MetricsSink,
    ):
        self.instance = instance
        self.projects = projects
        self.auth_service = auth_service
        self.account_service = account_service
        self.change_service = change_service
        self.project_service = project_service
        self.metrics = metrics
        self.gateway: Any = None
        self.log = logger.bind(host=instance)

    @classmethod
    def from_gateway(
        cls,
        instance: str,
        projects: dict[str, ProjectFilter | None],
        gateway: Any,
        metrics: MetricsSink,
    ) -> "InstanceHandler":
        """Build a handler whose four services are all backed by one gateway."""
        handler = cls(
            instance,
            projects,
            auth_service=gateway,
            account_service=gateway,
            change_service=gateway,
            project_service=gateway,
            metrics=metrics,
        )
        handler.gateway = gateway
        return handler

    async def close(self) -> None:
        """Close the gateway this handler was built from, if any."""
        if self.gateway is not None:
            await self.gateway.close()

    async def query_changes_for_project(
        self,
        project: str,
        last_update: datetime,
        rate_limit: int,
        additional_filters: list[str] | None = None,
    ) -> list[ChangeInfo]:
        """Run the poller for one project of this instance and count the outcome."""
        try:
            changes = await query_changes_for_project(
                self.change_service,
                project,
                last_update,
                rate_limit,
                additional_filters,
                log=self.log.bind(repo=project),
            )
        except Exception:
            self.metrics.record_query_result(self.instance, project, QueryResult.ERROR)
            raise

        self.metrics.record_query_result(self.instance, project, QueryResult.SUCCESS)
        return changes

    async def query_all_changes(
        self, last_state: dict[str, datetime] | None, rate_limit: int
    ) -> list[ChangeInfo]:
        """
        Poll every watched project, skipping the ones that fail.

        A project missing from ``last_state`` has never been synced; its
        watermark defaults to now so only activity from here on is reported.
        """
        last_state = last_state or {}
        result: list[ChangeInfo] = []
        time_now = datetime.now(UTC)

        for project, filters in list(self.projects.items()):
            log = self.log.bind(repo=project)
            last_update = last_state.get(project)
            if last_update is None:
                last_update = time_now
                log.warning(
                    "lastState not found, defaulting to now", now=time_now.isoformat()
                )

            try:
                changes = await self.query_changes_for_project(
                    project,
                    last_update,
                    rate_limit,
                    query_strings_from_filter(filters),
                )
            except Exception as e:
                # One failing project must not halt its siblings.
                log.error(
                    "Failed to query changes",
                    error=str(e),
                    last_update=last_update.isoformat(),
                    rate_limit=rate_limit,
                )
                continue

            result.extend(changes)

        return result
