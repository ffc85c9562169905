"""
Sync state management for the Gerrit poller.

The client never advances watermarks itself: a poll has no way of knowing
whether its results were consumed. Callers keep the watermarks in a tracker,
hand a snapshot to each poll and advance a project only after its results
have been handled.
"""

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from ..models import InstanceProjects, LastSyncState

logger = logging.getLogger(__name__)


class SyncStateTracker(ABC):
    """Abstract base class for last-sync watermark storage."""

    @abstractmethod
    async def current(self) -> LastSyncState:
        """
        Get a snapshot of every watermark.

        Returns:
            Independent copy of the instance -> project -> time map
        """
        pass

    @abstractmethod
    async def update(self, instances: InstanceProjects) -> None:
        """
        Reconcile tracked projects with the configured ones.

        Args:
            instances: Configured instance -> project -> filter map
        """
        pass

    @abstractmethod
    async def advance(self, instance: str, project: str, when: datetime) -> None:
        """
        Move a project's watermark forward.

        Args:
            instance: Gerrit instance
            project: Project name
            when: New watermark; ignored if older than the current one
        """
        pass


class InMemorySyncStateTracker(SyncStateTracker):
    """Watermarks kept in process memory."""

    def __init__(self, initial: LastSyncState | None = None) -> None:
        self.state = LastSyncState(initial or {}).deep_copy()

    async def current(self) -> LastSyncState:
        return self.state.deep_copy()

    async def update(self, instances: InstanceProjects) -> None:
        """Seed new projects with now and forget the ones no longer configured."""
        now = datetime.now(UTC)
        updated = LastSyncState()

        for instance, projects in instances.items():
            existing = self.state.get(instance, {})
            updated[instance] = {}
            for project in projects:
                if project in existing:
                    updated[instance][project] = existing[project]
                else:
                    logger.debug(f"Starting sync state for {instance}/{project} at {now}")
                    updated[instance][project] = now

        dropped = {
            f"{instance}/{project}"
            for instance, projects in self.state.items()
            for project in projects
            if project not in updated.get(instance, {})
        }
        if dropped:
            logger.info(f"Dropping sync state for {sorted(dropped)}")

        self.state = updated

    async def advance(self, instance: str, project: str, when: datetime) -> None:
        projects = self.state.setdefault(instance, {})
        previous = projects.get(project)
        if previous is not None and when <= previous:
            logger.debug(
                f"Not moving {instance}/{project} watermark back from {previous} to {when}"
            )
            return
        projects[project] = when
