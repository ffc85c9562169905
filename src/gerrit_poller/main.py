"""
Main entry point for the Gerrit poller.

This module configures logging and runs a polling loop that reports changes
needing attention on every watched project, advancing each project's
watermark only after its poll succeeded.
"""

import asyncio
import logging
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError

from .client import GerritClient
from .config import Settings, get_settings
from .exceptions import GerritPollerError
from .models import InstanceProjects
from .state import InMemorySyncStateTracker, SyncStateTracker


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level), format="%(message)s"
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if settings.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_instance_projects() -> InstanceProjects | None:
    """Re-read the watched projects; None keeps the current configuration."""
    logger = structlog.get_logger()
    try:
        return Settings().instance_projects
    except (ValidationError, ValueError) as e:
        logger.error("Invalid gerrit project configuration", error=str(e))
        return None


async def poll_once(
    client: GerritClient, tracker: SyncStateTracker, rate_limit: int
) -> int:
    """
    Poll every tracked project once.

    Returns:
        Number of changes found
    """
    logger = structlog.get_logger()
    state = await tracker.current()
    found = 0

    for instance, projects in state.items():
        for project, last_update in projects.items():
            poll_start = datetime.now(UTC)
            try:
                changes = await client.query_changes_for_project(
                    instance, project, last_update, rate_limit
                )
            except GerritPollerError as e:
                logger.error(
                    "Project poll failed",
                    instance=instance,
                    project=project,
                    error=str(e),
                )
                continue

            for change in changes:
                logger.info(
                    "Change needs attention",
                    instance=instance,
                    project=project,
                    change=change.number,
                    status=change.status,
                    subject=change.subject,
                )
            found += len(changes)
            await tracker.advance(instance, project, poll_start)

    return found


async def run(settings: Settings) -> None:
    """Run the poller until cancelled."""
    logger = structlog.get_logger()
    client = GerritClient.from_settings(settings)
    tracker = InMemorySyncStateTracker()

    try:
        await client.apply_global_config(
            load_instance_projects,
            tracker,
            cookiefile_path=settings.cookiefile_path,
            token_path=settings.token_path,
        )

        while True:
            found = await poll_once(client, tracker, settings.rate_limit)
            logger.info("Polling cycle completed", changes_found=found)
            await asyncio.sleep(settings.poll_interval_seconds)
    finally:
        await client.close()


def main() -> None:
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings)
    logger = structlog.get_logger()

    logger.info(
        "Starting gerrit poller",
        instances=sorted(settings.instance_projects),
        rate_limit=settings.rate_limit,
    )

    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down gerrit poller")


if __name__ == "__main__":
    main()
