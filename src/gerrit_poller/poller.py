"""
Incremental change poller.

Pages through one project's change listing, newest update first, and stops at
the first change that is not newer than the project's watermark. Everything
before that point is classified into "needs attention" or "skip".
"""

from datetime import datetime
from typing import Any

import structlog

from .gateway import ChangeService
from .models import (
    ChangeInfo,
    ChangeMessageInfo,
    ChangeStatus,
    ProjectFilter,
    parse_timestamp,
)

logger = structlog.get_logger(__name__)

ADDITIONAL_FIELDS = ["CURRENT_REVISION", "CURRENT_COMMIT", "CURRENT_FILES", "MESSAGES"]

PATCHSET_LEVEL_PATH = "/PATCHSET_LEVEL"


def query_strings_from_filter(filters: ProjectFilter | None) -> list[str]:
    """
    Render a project's branch filter as query terms.

    Included branches become one OR group, excluded branches one AND group of
    negated terms.
    """
    if filters is None:
        return []

    terms = []
    if filters.branches:
        terms.append(
            "(" + "+OR+".join(f"branch:{br}" for br in filters.branches) + ")"
        )
    if filters.excluded_branches:
        terms.append(
            "("
            + "+AND+".join(f"-branch:{br}" for br in filters.excluded_branches)
            + ")"
        )
    return terms


def build_query(project: str, additional_filters: list[str]) -> str:
    return "+".join([*additional_filters, f"project:{project}"])


async def inject_patchset_messages(
    change_service: ChangeService, change: ChangeInfo
) -> None:
    """
    Merge patchset-level comments into ``change.messages``.

    Each comment becomes a message carrying its author, timestamp, text and
    target patchset. The merged list is re-sorted by date; the sort is stable
    so equal timestamps keep their original order.
    """
    comments = await change_service.list_change_comments(change.id)
    patchset_comments = comments.get(PATCHSET_LEVEL_PATH)
    if not patchset_comments:
        return

    for comment in patchset_comments:
        change.messages.append(
            ChangeMessageInfo(
                author=comment.author,
                date=comment.updated,
                message=comment.message,
                revision_number=comment.patch_set,
            )
        )
    change.messages.sort(key=lambda message: message.date)


async def query_changes_for_project(
    change_service: ChangeService,
    project: str,
    last_update: datetime,
    rate_limit: int,
    additional_filters: list[str] | None = None,
    log: Any = None,
) -> list[ChangeInfo]:
    """
    Return every change in ``project`` with activity after ``last_update``.

    Args:
        change_service: Gateway used for the change listing and comments
        project: Project name
        last_update: Watermark; activity at or before it is already known
        rate_limit: Page size
        additional_filters: Extra query terms (branch filters, ad-hoc terms)
        log: Bound logger to extend; defaults to this module's logger

    Returns:
        Changes in the order the server returned them

    Raises:
        GerritAPIError: If a page cannot be fetched
    """
    log = log if log is not None else logger
    # Naive watermarks are taken as UTC, like the timestamps they are compared to.
    last_update = parse_timestamp(last_update)
    query = build_query(project, list(additional_filters or []))
    log = log.bind(query=query, additional_fields=ADDITIONAL_FIELDS)

    pending: list[ChangeInfo] = []
    start = 0

    while True:
        page_log = log.bind(start=start)
        changes = await change_service.query_changes(
            query, start, rate_limit, ADDITIONAL_FIELDS
        )

        if not changes:
            page_log.info("No more changes")
            return pending

        page_log.debug("Found gerrit changes from page", changes=len(changes))
        start += len(changes)

        for change in changes:
            change_log = page_log.bind(
                change=change.number,
                updated=change.updated.isoformat(),
                status=change.status,
                last_update=last_update.isoformat(),
            )

            # Results are newest first, so everything from here on is known.
            if not change.updated > last_update:
                change_log.debug("No more recently updated changes")
                return pending

            if change.status == ChangeStatus.MERGED:
                if change.submitted is None or not change.submitted > last_update:
                    change_log.debug("Skipping previously merged change")
                    continue
                change_log.debug("Found merged change")
                pending.append(change)

            elif change.status == ChangeStatus.NEW:
                if await _is_new_change_actionable(
                    change_service, change, last_update, change_log
                ):
                    pending.append(change)

            else:
                change_log.debug("Ignored change")


async def _is_new_change_actionable(
    change_service: ChangeService,
    change: ChangeInfo,
    last_update: datetime,
    log: Any,
) -> bool:
    revision = change.revisions.get(change.current_revision or "")
    if revision is None:
        log.error("Revision not found", revision=change.current_revision)
        return False

    log = log.bind(created=revision.created.isoformat())
    try:
        await inject_patchset_messages(change_service, change)
    except Exception as e:
        log.error("Failed to inject patchset messages", error=str(e))

    new_messages = False
    for message in change.messages:
        if message.revision_number == revision.number and message.date > last_update:
            log.info(
                "New messages",
                message=message.message,
                message_date=message.date.isoformat(),
            )
            new_messages = True
            break

    if not new_messages and not revision.created > last_update:
        log.debug("Skipping existing change")
        return False
    if not new_messages:
        log.debug("Found updated change")
    return True
