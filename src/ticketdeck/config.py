"""Configuration loading for ticketdeck."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from ticketdeck.cache.models import (
    DEFAULT_ACTIVE_STATUSES,
    DEFAULT_DONE_STATUSES,
    SavedFilter,
    StatusSets,
    TeamMember,
)

CONFIG_ENV_VAR = "TICKETDECK_CONFIG"
DEFAULT_CONFIG_DIR = Path("~/.config/ticketdeck")
DEFAULT_CONFIG_FILE = "config.yml"
DEFAULT_DONE_WINDOW_DAYS = 14
DEFAULT_MAX_WORKERS = 6

DEFAULT_RESOLUTIONS = [
    "Done",
    "Duplicate",
    "Won't Do",
    "Cannot Reproduce",
    "Declined",
    "Fixed",
    "Incomplete",
    "Won't Fix",
    "Works as Designed",
]


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""


@dataclass
class JiraConfig:
    """Project-level settings for the external tracker."""

    project: str
    team_name: str
    done_window_days: int = DEFAULT_DONE_WINDOW_DAYS
    command: str = "jira"
    base_url: str = ""


@dataclass
class AppConfig:
    """ticketdeck configuration.

    The project key doubles as the scope of the persisted cache snapshot, so
    two configs pointing at the same project share one snapshot file.
    """

    jira: JiraConfig
    team: dict[str, str] = field(default_factory=dict)
    statuses: StatusSets = field(default_factory=StatusSets)
    resolutions: list[str] = field(default_factory=lambda: list(DEFAULT_RESOLUTIONS))
    filters: list[SavedFilter] = field(default_factory=list)
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CONFIG_DIR / "cache")
    max_workers: int = DEFAULT_MAX_WORKERS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        """Create config from dictionary.

        Args:
            data: Configuration dictionary from YAML.

        Returns:
            Parsed configuration object.

        Raises:
            ConfigError: If required fields are missing or malformed.
        """
        jira_data = data.get("jira")
        if not isinstance(jira_data, dict):
            raise ConfigError("Missing required section: jira")
        missing = [f for f in ("project", "team_name") if f not in jira_data]
        if missing:
            raise ConfigError(f"Missing required fields: {', '.join(f'jira.{m}' for m in missing)}")

        try:
            done_window_days = int(jira_data.get("done_window_days", DEFAULT_DONE_WINDOW_DAYS))
            max_workers = int(data.get("max_workers", DEFAULT_MAX_WORKERS))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid number in config: {e}") from e
        if done_window_days < 1:
            raise ConfigError("jira.done_window_days must be at least 1")
        if max_workers < 1:
            raise ConfigError("max_workers must be at least 1")

        jira = JiraConfig(
            project=str(jira_data["project"]),
            team_name=str(jira_data["team_name"]),
            done_window_days=done_window_days,
            command=str(jira_data.get("command", "jira")),
            base_url=str(jira_data.get("base_url", "")),
        )

        statuses_data = data.get("statuses") or {}
        statuses = StatusSets(
            active=tuple(statuses_data.get("active", DEFAULT_ACTIVE_STATUSES)),
            done=tuple(statuses_data.get("done", DEFAULT_DONE_STATUSES)),
        )

        filters = []
        for entry in data.get("filters") or []:
            if not isinstance(entry, dict) or "name" not in entry or "jql" not in entry:
                raise ConfigError("Each filter needs a name and a jql query")
            filters.append(SavedFilter(name=str(entry["name"]), jql=str(entry["jql"])))

        cache_dir = data.get("cache_dir")
        return cls(
            jira=jira,
            team={str(k): str(v or "") for k, v in (data.get("team") or {}).items()},
            statuses=statuses,
            resolutions=list(data.get("resolutions", DEFAULT_RESOLUTIONS)),
            filters=filters,
            cache_dir=Path(cache_dir) if cache_dir else DEFAULT_CONFIG_DIR / "cache",
            max_workers=max_workers,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jira": {
                "project": self.jira.project,
                "team_name": self.jira.team_name,
                "done_window_days": self.jira.done_window_days,
                "command": self.jira.command,
                "base_url": self.jira.base_url,
            },
            "team": dict(self.team),
            "statuses": {"active": list(self.statuses.active), "done": list(self.statuses.done)},
            "resolutions": list(self.resolutions),
            "filters": [{"name": f.name, "jql": f.jql} for f in self.filters],
            "cache_dir": str(self.cache_dir),
            "max_workers": self.max_workers,
        }

    @property
    def done_window(self) -> timedelta:
        return timedelta(days=self.jira.done_window_days)

    @property
    def snapshot_dir(self) -> Path:
        return self.cache_dir.expanduser()

    def team_members(self) -> list[TeamMember]:
        """Roster from the team mapping, deduplicated by email."""
        seen: set[str] = set()
        members = []
        for name, email in self.team.items():
            if email and email.casefold() not in seen:
                seen.add(email.casefold())
                members.append(TeamMember(name=name, email=email))
        return members

    def find_filter(self, name: str) -> SavedFilter | None:
        for saved in self.filters:
            if saved.name == name:
                return saved
        return None

    def scope_emails(self, user_email: str) -> list[str]:
        """Current user first, then every other team member."""
        emails = [user_email]
        for member in self.team_members():
            if member.email.casefold() != user_email.casefold():
                emails.append(member.email)
        return emails

    def active_query(self, assignee_email: str) -> str:
        """JQL for one assignee's tickets in an active status."""
        return (
            f"project = {_quote(self.jira.project)}"
            f" AND assignee = {_quote(assignee_email)}"
            f" AND status in {_clause(self.statuses.active)}"
            " ORDER BY updated DESC"
        )

    def done_query(self, assignee_email: str) -> str:
        """JQL for one assignee's tickets that reached a done status inside the window."""
        return (
            f"project = {_quote(self.jira.project)}"
            f" AND assignee = {_quote(assignee_email)}"
            f" AND status in {_clause(self.statuses.done)}"
            f" AND updated >= -{self.jira.done_window_days}d"
            " ORDER BY updated DESC"
        )


def _quote(value: str) -> str:
    escaped = value.replace('"', '\\"')
    return f'"{escaped}"'


def _clause(values: tuple[str, ...]) -> str:
    return f"({', '.join(_quote(v) for v in values)})"


def config_path() -> Path:
    """Path of the config file, honouring TICKETDECK_CONFIG."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return (DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE).expanduser()


def load_config(path: Path | None = None) -> AppConfig | None:
    """Load the config from disk.

    Args:
        path: Config file path. Defaults to ``config_path()``.

    Returns:
        The parsed config, or None if the file does not exist.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    path = path or config_path()
    if not path.exists():
        return None
    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return AppConfig.from_dict(data)


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write the config to disk, creating the directory if needed."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.to_dict(), sort_keys=False), encoding="utf-8")
    return path
