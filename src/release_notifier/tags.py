"""Tag resolution: find the release a tag should be compared against.

Given the tag that was just released and the repository's tag history,
``resolve_previous_tag`` picks the tag that bounds the start of the release
window:

- Stable tags are compared along the stable lineage only, ordered by
  semantic version. A patch for an old major line published after a newer
  major still resolves to the previous patch of its own line.
- Prerelease and nightly tags are ordered by date, since they have no
  meaningful "previous major". The previous tag may be stable or not.

Tag names are normalised before parsing: a monorepo package namespace
("pkg@1.2.0") and a leading "v" are stripped. Names that are not semantic
versions never enter the working set.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import semver

from release_notifier.errors import NoPreviousTagFound, TagNotFound
from release_notifier.logging_config import get_logger
from release_notifier.schemas import ReleaseWindow, Tag

logger = get_logger(__name__)

NIGHTLY_TAG_PREFIX = "v0.0.0-nightly-"


# ---------------------------------------------------------------------------
# Tag Parsing
# ---------------------------------------------------------------------------


def clean_tag_name(name: str, package_name: str | None = None) -> str:
    """Strip "refs/tags/" and the "<package>@" namespace from a tag name."""
    name = name.removeprefix("refs/tags/")
    if package_name:
        name = name.removeprefix(f"{package_name}@")
    return name


def parse_version(name: str, package_name: str | None = None) -> semver.Version | None:
    """Parse a tag name as a semantic version.

    Returns:
        The parsed version, or None if the name is not a semantic version
    """
    clean = clean_tag_name(name, package_name)
    try:
        return semver.Version.parse(clean.removeprefix("v"))
    except ValueError:
        return None


def in_package_namespace(name: str, package_name: str | None) -> bool:
    """Whether a tag belongs to the package being followed.

    Without a package every tag counts. With one, only "<package>@..." tags
    and repository-wide nightly tags do.
    """
    if not package_name:
        return True
    return name.startswith(f"{package_name}@") or name.startswith(NIGHTLY_TAG_PREFIX)


def build_tag(name: str, date: datetime, package_name: str | None = None) -> Tag | None:
    """Turn a raw tag name and date into a Tag, or None if it doesn't qualify."""
    if not in_package_namespace(name, package_name):
        return None

    version = parse_version(name, package_name)
    if version is None:
        logger.debug("tag_skipped_not_semver", tag=name)
        return None

    return Tag(
        name=name,
        version=version,
        date=date,
        is_prerelease=version.prerelease is not None,
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TagPair:
    """The released tag and the tag it is compared against."""

    current: Tag
    previous: Tag

    @property
    def window(self) -> ReleaseWindow:
        return ReleaseWindow.between(self.previous, self.current)

    @property
    def is_consistent(self) -> bool:
        """False when the previous tag is not older than the current one."""
        return self.previous.date < self.current.date


def sort_by_version(tags: Iterable[Tag]) -> list[Tag]:
    """Newest version first. Equal versions fall back to newest date."""
    return sorted(tags, key=lambda t: (t.version, t.date), reverse=True)


def sort_by_date(tags: Iterable[Tag]) -> list[Tag]:
    """Newest date first. Equal dates fall back to highest version."""
    return sorted(tags, key=lambda t: (t.date, t.version), reverse=True)


def resolve_previous_tag(current_tag_name: str, tags: Iterable[Tag]) -> TagPair:
    """Find the tag preceding ``current_tag_name``.

    Args:
        current_tag_name: Name of the tag that was just released
        tags: Full tag history of the repository (or package namespace)

    Returns:
        The current tag and the tag that precedes it

    Raises:
        TagNotFound: If ``current_tag_name`` is not in ``tags``
        NoPreviousTagFound: If the current tag is the oldest of its class
    """
    all_tags = list(tags)
    current = next((t for t in all_tags if t.name == current_tag_name), None)
    if current is None:
        raise TagNotFound(current_tag_name)

    if current.is_prerelease:
        pair = _previous_by_date(current, all_tags)
    else:
        pair = _previous_stable(current, all_tags)

    logger.info(
        "tag_resolved",
        current=pair.current.name,
        previous=pair.previous.name,
        stable=not current.is_prerelease,
        current_date=pair.current.date.isoformat(),
        previous_date=pair.previous.date.isoformat(),
    )

    if not pair.is_consistent:
        logger.warning(
            "inconsistent_tag_history",
            current=pair.current.name,
            previous=pair.previous.name,
            current_date=pair.current.date.isoformat(),
            previous_date=pair.previous.date.isoformat(),
        )

    return pair


def _previous_stable(current: Tag, tags: list[Tag]) -> TagPair:
    stable = sort_by_version(t for t in tags if not t.is_prerelease)
    index = next(i for i, t in enumerate(stable) if t.name == current.name)

    for candidate in stable[index + 1:]:
        if candidate.version < current.version:
            return TagPair(current=current, previous=candidate)

    raise NoPreviousTagFound(current.name, stable=True)


def _previous_by_date(current: Tag, tags: list[Tag]) -> TagPair:
    ordered = sort_by_date(tags)
    index = next(i for i, t in enumerate(ordered) if t.name == current.name)

    if index + 1 >= len(ordered):
        raise NoPreviousTagFound(current.name, stable=False)

    return TagPair(current=current, previous=ordered[index + 1])
