"""Run configuration, built once at process start.

The CLI calls ``load_config()`` to read the environment (and an optional
YAML file) into a ``NotifierConfig``. Everything downstream receives that
object explicitly; nothing in the core reads ``os.environ``.

Environment variables mirror the names used by the release workflow:

    GITHUB_TOKEN, GITHUB_REPOSITORY, VERSION or GITHUB_REF,
    DEFAULT_BRANCH, NIGHTLY_BRANCH, PR_FILES_STARTS_WITH,
    AWAITING_RELEASE_LABEL, NIGHTLY_RELEASE, PACKAGE_VERSION_TO_FOLLOW,
    FILTER_BY_BASE_BRANCH, DRY_RUN, MAX_CONCURRENCY, GITHUB_API_URL,
    WINDOW_SOURCE

The YAML file accepts the same settings in snake_case. Environment values
win over file values.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from release_notifier.errors import ConfigurationError

TAG_REF_PREFIX = "refs/tags/"

DEFAULT_IGNORED_PR_TITLES = [
    "chore: update version for release",
    "chore: update version for release (pre)",
]

# env var -> config field
_ENV_FIELDS = {
    "GITHUB_TOKEN": "token",
    "GITHUB_API_URL": "api_url",
    "VERSION": "tag",
    "DEFAULT_BRANCH": "default_branch",
    "NIGHTLY_BRANCH": "nightly_branch",
    "PR_FILES_STARTS_WITH": "path_prefixes",
    "AWAITING_RELEASE_LABEL": "awaiting_release_label",
    "NIGHTLY_RELEASE": "is_nightly",
    "PACKAGE_VERSION_TO_FOLLOW": "package_name",
    "FILTER_BY_BASE_BRANCH": "filter_by_base_branch",
    "DRY_RUN": "dry_run",
    "MAX_CONCURRENCY": "max_concurrency",
    "WINDOW_SOURCE": "window_source",
}

_LIST_FIELDS = {"path_prefixes"}


class NotifierConfig(BaseModel):
    """Everything a notification run needs to know.

    Attributes:
        owner: Repository owner (user or organisation)
        repo: Repository name
        token: Forge API token
        tag: Tag that was just released (no "refs/tags/" prefix)
        path_prefixes: Only PRs touching a file under one of these count.
                       Empty means no path filtering.
        default_branch: Branch stable releases are cut from
        nightly_branch: Branch nightly releases are cut from
        awaiting_release_label: Label marking PRs that wait for a release
        is_nightly: Whether this release is a nightly. Derived from the tag
                    when not given explicitly.
        package_name: Monorepo package whose "<package>@<version>" tags to follow
        filter_by_base_branch: Restrict PRs to the release's base branch(es)
        ignored_pr_titles: PR titles (case-insensitive) never notified
        dry_run: Log every action but write nothing to the forge
        max_concurrency: Upper bound on in-flight forge requests
        api_url: REST API root; the GraphQL endpoint is derived from it
        window_source: "tags" bounds the window by the released tag and the
                       tag before it; "releases" by the latest release and
                       the last stable release before it
    """

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    tag: str = Field(..., min_length=1)
    path_prefixes: list[str] = Field(default_factory=lambda: ["packages/"])
    default_branch: str | None = None
    nightly_branch: str | None = None
    awaiting_release_label: str = "awaiting release"
    is_nightly: bool | None = None
    package_name: str | None = None
    filter_by_base_branch: bool = False
    ignored_pr_titles: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORED_PR_TITLES)
    )
    dry_run: bool = False
    max_concurrency: int = Field(8, ge=1, le=50)
    api_url: str = "https://api.github.com"
    window_source: Literal["tags", "releases"] = "tags"

    @field_validator("window_source", mode="before")
    @classmethod
    def lower_window_source(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("tag")
    @classmethod
    def strip_tag_ref(cls, value: str) -> str:
        value = value.strip()
        if value.startswith(TAG_REF_PREFIX):
            value = value[len(TAG_REF_PREFIX):]
        if not value:
            raise ValueError("tag is empty")
        return value

    @field_validator("path_prefixes", "ignored_pr_titles", mode="before")
    @classmethod
    def split_comma_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def derive_nightly(self) -> "NotifierConfig":
        if self.is_nightly is None:
            self.is_nightly = "nightly" in self.tag
        return self

    @property
    def repository(self) -> str:
        """Repository in "owner/name" form."""
        return f"{self.owner}/{self.repo}"

    @property
    def is_experimental(self) -> bool:
        return "experimental" in self.tag

    @property
    def release_version(self) -> str:
        """Tag name as shown to users, without the package namespace."""
        if self.package_name and self.tag.startswith(f"{self.package_name}@"):
            return self.tag[len(self.package_name) + 1:]
        return self.tag

    def pull_url(self, number: int) -> str:
        return f"https://github.com/{self.repository}/pull/{number}"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML settings file.

    Args:
        path: Path to the YAML file.

    Returns:
        The mapping of settings in the file.

    Raises:
        ConfigurationError: If the file is missing, unparsable, or not a mapping.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file {path} does not exist")

    try:
        raw = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return raw


def load_config(
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> NotifierConfig:
    """Build the run configuration from the environment and an optional file.

    Args:
        environ: Environment mapping. Defaults to ``os.environ``.
        config_path: Optional YAML file. Falls back to the
                     RELEASE_NOTIFIER_CONFIG environment variable.

    Returns:
        A validated NotifierConfig

    Raises:
        ConfigurationError: If a required value is missing or malformed
    """
    env = os.environ if environ is None else environ

    config_path = config_path or env.get("RELEASE_NOTIFIER_CONFIG")
    data: dict[str, Any] = load_config_file(config_path) if config_path else {}

    repository = env.get("GITHUB_REPOSITORY")
    if repository:
        owner, sep, repo = repository.partition("/")
        if not sep or not owner or not repo or "/" in repo:
            raise ConfigurationError(
                f"GITHUB_REPOSITORY must look like 'owner/name', got {repository!r}"
            )
        data["owner"], data["repo"] = owner, repo

    ref = env.get("GITHUB_REF")
    if ref and not env.get("VERSION"):
        if not ref.startswith(TAG_REF_PREFIX):
            raise ConfigurationError(f"GITHUB_REF must be a tag, received {ref}")
        data["tag"] = ref

    for env_name, field_name in _ENV_FIELDS.items():
        value = env.get(env_name)
        if value is None:
            continue
        # an explicitly empty list variable clears the list; other empties are unset
        if value.strip() or field_name in _LIST_FIELDS:
            data[field_name] = value

    try:
        return NotifierConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc
