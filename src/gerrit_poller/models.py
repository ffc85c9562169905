"""
Data model for the Gerrit poller.

These are local, library-independent representations of the review-service
REST payloads. Field aliases follow the Gerrit JSON names (``_number``,
``_revision_number``...) so API responses validate directly, while the Python
attribute names stay readable.
"""

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

GERRIT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a Gerrit timestamp into an aware UTC datetime.

    Gerrit sends ``"2013-02-21 11:16:36.775000000"`` (UTC, nanosecond
    precision). Python only keeps microseconds, so the fraction is truncated.
    ISO-8601 strings and datetimes are accepted as well.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string or datetime, got {type(value)}")

    text = value.strip()
    if " " in text and "T" not in text:
        date_part, _, time_part = text.partition(" ")
        seconds, _, fraction = time_part.partition(".")
        fraction = (fraction or "0")[:6]
        parsed = datetime.strptime(
            f"{date_part} {seconds}.{fraction}", GERRIT_TIMESTAMP_FORMAT
        )
        return parsed.replace(tzinfo=UTC)

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


Timestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]


class ChangeStatus:
    """Change status values reported by the review service."""

    NEW = "NEW"
    MERGED = "MERGED"
    ABANDONED = "ABANDONED"


class QueryResult:
    """Outcome labels recorded per (instance, project) query."""

    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class GerritModel(BaseModel):
    """Base model: accept field names or JSON aliases, ignore unknown keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AccountInfo(GerritModel):
    """A review-service account."""

    account_id: int | None = Field(default=None, alias="_account_id")
    name: str | None = None
    email: str | None = None
    username: str | None = None


class RevisionInfo(GerritModel):
    """One patchset of a change."""

    number: int = Field(alias="_number")
    created: Timestamp
    ref: str | None = None
    uploader: AccountInfo | None = None
    commit: dict[str, Any] | None = None
    files: dict[str, Any] | None = None


class ChangeMessageInfo(GerritModel):
    """A message posted on a change, tagged with the patchset it targets."""

    id: str | None = None
    author: AccountInfo | None = None
    date: Timestamp
    message: str = ""
    revision_number: int = Field(default=0, alias="_revision_number")


class CommentInfo(GerritModel):
    """A review comment; patchset-level ones live under ``/PATCHSET_LEVEL``."""

    id: str | None = None
    author: AccountInfo | None = None
    updated: Timestamp
    message: str = ""
    patch_set: int = 0


class ChangeInfo(GerritModel):
    """A change (review request) as returned by the change query endpoint."""

    id: str
    number: int = Field(alias="_number")
    project: str = ""
    branch: str = ""
    change_id: str | None = None
    subject: str = ""
    status: str
    created: Timestamp | None = None
    updated: Timestamp
    submitted: Timestamp | None = None
    owner: AccountInfo | None = None
    current_revision: str | None = None
    revisions: dict[str, RevisionInfo] = Field(default_factory=dict)
    messages: list[ChangeMessageInfo] = Field(default_factory=list)
    more_changes: bool = Field(default=False, alias="_more_changes")


class BranchInfo(GerritModel):
    """A project branch and the revision its head points at."""

    ref: str
    revision: str


class ReviewInput(GerritModel):
    """Payload for posting a review on a revision."""

    message: str = ""
    labels: dict[str, str] = Field(default_factory=dict)


class ReviewResult(GerritModel):
    """Result of posting a review."""

    labels: dict[str, Any] = Field(default_factory=dict)
    ready: bool | None = None


class ProjectFilter(GerritModel):
    """Branch restrictions for one watched (instance, project) pair."""

    branches: list[str] = Field(default_factory=list)
    excluded_branches: list[str] = Field(default_factory=list)


# instance -> project -> filter (None means no branch restriction)
InstanceProjects = dict[str, dict[str, ProjectFilter | None]]


class LastSyncState(dict[str, dict[str, datetime]]):
    """Map from instance name to project to last-synced time for that project."""

    def deep_copy(self) -> "LastSyncState":
        """Return a copy whose nested project maps are independent."""
        return LastSyncState(
            {instance: dict(projects) for instance, projects in self.items()}
        )
