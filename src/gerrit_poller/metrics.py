"""
Query result metrics for the Gerrit poller.

The poller records one outcome per (instance, project) query into a sink that
is passed in by the owner of the client, rather than into a process-wide
registry.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog

from .models import QueryResult

logger = structlog.get_logger(__name__)


class MetricsSink(Protocol):
    """Anything that can count query outcomes."""

    def record_query_result(self, instance: str, project: str, result: str) -> None:
        ...


@dataclass
class ProjectQueryMetrics:
    """Query counters for a single watched project."""

    instance: str
    project: str
    success_count: int = 0
    error_count: int = 0
    consecutive_errors: int = 0
    last_result: str | None = None
    last_query_time: datetime | None = None

    def update(self, result: str) -> None:
        """Update counters after a query."""
        self.last_query_time = datetime.now()
        self.last_result = result

        if result == QueryResult.SUCCESS:
            self.success_count += 1
            self.consecutive_errors = 0
        else:
            self.error_count += 1
            self.consecutive_errors += 1

    @property
    def total_queries(self) -> int:
        return self.success_count + self.error_count


class QueryResultMetrics:
    """
    In-memory counter of query results by instance, project and outcome.

    This is the default sink; exporting the counters is left to the owner.
    """

    def __init__(self) -> None:
        self.start_time = datetime.now()
        self.project_metrics: dict[tuple[str, str], ProjectQueryMetrics] = {}

    def record_query_result(self, instance: str, project: str, result: str) -> None:
        """Record the outcome of one project query."""
        key = (instance, project)
        if key not in self.project_metrics:
            self.project_metrics[key] = ProjectQueryMetrics(
                instance=instance, project=project
            )
        self.project_metrics[key].update(result)

        if result != QueryResult.SUCCESS:
            logger.debug(
                "Recorded failed query",
                instance=instance,
                project=project,
                consecutive_errors=self.project_metrics[key].consecutive_errors,
            )

    def get(self, instance: str, project: str, result: str) -> int:
        """Return the counter value for one (instance, project, result) label set."""
        metrics = self.project_metrics.get((instance, project))
        if metrics is None:
            return 0
        if result == QueryResult.SUCCESS:
            return metrics.success_count
        return metrics.error_count

    def get_project_summary(self) -> dict[str, dict[str, Any]]:
        """Get counters for every project, keyed ``instance/project``."""
        summary = {}
        for (instance, project), metrics in self.project_metrics.items():
            summary[f"{instance}/{project}"] = {
                "total_queries": metrics.total_queries,
                "success_count": metrics.success_count,
                "error_count": metrics.error_count,
                "consecutive_errors": metrics.consecutive_errors,
                "last_result": metrics.last_result,
                "last_query": (
                    metrics.last_query_time.isoformat()
                    if metrics.last_query_time
                    else None
                ),
            }
        return summary
