"""Pydantic models for the data that flows through a notification run.

These models are the in-memory view of forge data for a single run:
- Tags and the release window computed from them
- Merged pull requests and their changed files
- Releases (used when pruning nightlies)
- The run summary and per-item dispatch failures

Key design decisions:
- Forge JSON is parsed at the adapter boundary via ``from_api`` classmethods,
  so the core never touches raw dicts
- Timestamps are timezone-aware datetimes
- Models are frozen; side effects happen on the forge, not on these objects
"""

from __future__ import annotations

from datetime import datetime

import semver
from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Tags and Windows
# ---------------------------------------------------------------------------


class Tag(BaseModel):
    """A release tag with the date used to bound release windows.

    Attributes:
        name: Tag name as it appears on the forge (e.g., "v1.2.0", "pkg@1.2.0")
        version: Semantic version parsed from the name, without any package
                 prefix or leading "v"
        date: Tagger date for annotated tags, commit date otherwise
        is_prerelease: Whether the version has a prerelease component
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1, description="Tag name on the forge")
    version: semver.Version = Field(..., description="Parsed semantic version")
    date: datetime = Field(..., description="Tag or commit timestamp")
    is_prerelease: bool = Field(False, description="Has a prerelease component")

    @model_validator(mode="after")
    def check_prerelease_matches_version(self) -> "Tag":
        """Keep ``is_prerelease`` consistent with the parsed version."""
        if self.is_prerelease != (self.version.prerelease is not None):
            raise ValueError(
                f"Tag {self.name} has is_prerelease={self.is_prerelease} "
                f"but version {self.version} disagrees."
            )
        return self

    @property
    def is_nightly(self) -> bool:
        return self.is_prerelease and "nightly" in str(self.version.prerelease)


class ReleaseWindow(BaseModel):
    """Open interval between two tag timestamps.

    Both ends are exclusive: something merged exactly at ``start`` or
    exactly at ``end`` is outside the window.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @classmethod
    def between(cls, previous: Tag, current: Tag) -> "ReleaseWindow":
        return cls(start=previous.date, end=current.date)

    @classmethod
    def between_releases(cls, previous: "Release", current: "Release") -> "ReleaseWindow":
        """Window bounded by two releases' creation times."""
        start = previous.created_at or previous.published_at
        end = current.created_at or current.published_at
        if start is None or end is None:
            raise ValueError(
                f"Releases {previous.tag_name} and {current.tag_name} need a date to bound a window"
            )
        return cls(start=start, end=end)

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def contains(self, moment: datetime) -> bool:
        return self.start < moment < self.end


# ---------------------------------------------------------------------------
# Pull Requests
# ---------------------------------------------------------------------------


class PullRequest(BaseModel):
    """A closed pull request as listed by the forge.

    Attributes:
        number: Pull request number
        html_url: Browser URL, also used as the GraphQL resource URL
        title: PR title
        body: PR description (None when the author left it empty)
        merged_at: When the PR was merged, None for closed-unmerged PRs
        updated_at: Last update time, used for early pagination exit
        base_branch: Branch the PR targets
        labels: Label names on the PR
        files: Changed file paths; only filled in for PRs inside the window
    """

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., gt=0, description="Pull request number")
    html_url: str = Field(..., description="Browser URL of the PR")
    title: str = Field("", description="PR title")
    body: str | None = Field(None, description="PR description")
    merged_at: datetime | None = Field(None, description="Merge timestamp")
    updated_at: datetime | None = Field(None, description="Last update timestamp")
    base_branch: str = Field("", description="Target branch")
    labels: list[str] = Field(default_factory=list, description="Label names")
    files: list[str] = Field(default_factory=list, description="Changed file paths")

    @classmethod
    def from_api(cls, data: dict) -> "PullRequest":
        """Build a PullRequest from a REST ``pulls`` list item."""
        return cls(
            number=data["number"],
            html_url=data["html_url"],
            title=data.get("title") or "",
            body=data.get("body"),
            merged_at=data.get("merged_at"),
            updated_at=data.get("updated_at"),
            base_branch=(data.get("base") or {}).get("ref", ""),
            labels=[label["name"] for label in data.get("labels") or []],
        )

    def has_label(self, name: str) -> bool:
        return name in self.labels


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


class Release(BaseModel):
    """A published (or draft) forge release."""

    model_config = ConfigDict(frozen=True)

    id: int
    tag_name: str
    prerelease: bool = False
    draft: bool = False
    created_at: datetime | None = None
    published_at: datetime | None = None

    @classmethod
    def from_api(cls, data: dict) -> "Release":
        return cls(
            id=data["id"],
            tag_name=data["tag_name"],
            prerelease=data.get("prerelease", False),
            draft=data.get("draft", False),
            created_at=data.get("created_at"),
            published_at=data.get("published_at"),
        )

    @property
    def is_stable(self) -> bool:
        return not self.prerelease and not self.draft

    @property
    def published_or_created(self) -> datetime | None:
        """Ordering key: publish time, or creation time for unpublished releases."""
        return self.published_at or self.created_at


# ---------------------------------------------------------------------------
# Run Results
# ---------------------------------------------------------------------------


class DispatchFailure(BaseModel):
    """One forge write that failed during dispatch.

    Attributes:
        action: What was attempted ("comment", "remove_label", "close", "delete_release")
        target: PR/issue number or release id the action was aimed at
        error: Error message from the forge adapter
    """

    action: str
    target: int
    error: str

    def describe(self) -> str:
        return f"{self.action} #{self.target}: {self.error}"


class RunSummary(BaseModel):
    """What a run did, for logging and for tests."""

    current_tag: str = ""
    previous_tag: str = ""
    skipped: bool = Field(False, description="Run exited early (e.g. experimental)")
    pull_requests: list[int] = Field(default_factory=list)
    issues_commented: list[int] = Field(default_factory=list)
    issues_closed: list[int] = Field(default_factory=list)
    labels_removed: list[int] = Field(default_factory=list)
    failures: list[DispatchFailure] = Field(default_factory=list)
