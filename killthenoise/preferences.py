"""Client-local persisted state: tenant, cached integration ids, issue list filters.

Values are stored as plain strings behind a small ``Storage`` protocol so the
view-models can be built against an in-memory backend in tests and a TOML
state file everywhere else.
"""

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Protocol, TypeVar

import structlog
import tomlkit
from tomlkit.exceptions import TOMLKitError

from killthenoise.models import (
    JiraStatusFilter,
    SeverityFilter,
    SortDirection,
    SortField,
    TypeFilter,
    ViewPreferences,
)

logger = structlog.get_logger(__name__)

DEFAULT_TENANT_ID = "550e8400-e29b-41d4-a716-446655440000"

TENANT_KEY = "tenantId"
TYPE_FILTER_KEY = "ai_issues_type_filter"
JIRA_STATUS_FILTER_KEY = "ai_issues_jira_status_filter"
SEVERITY_FILTER_KEY = "ai_issues_severity_filter"
TEAM_FILTER_KEY = "ai_issues_team_filter"
SORT_FIELD_KEY = "ai_issues_sort_field"
SORT_DIRECTION_KEY = "ai_issues_sort_direction"

# Left behind by the pre-OAuth Jira token form
LEGACY_JIRA_KEYS = ("jira_integration_id_old", "jira_base_url", "jira_access_token")

E = TypeVar("E", bound=Enum)


class Storage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class TomlStorage:
    """Flat key/value state file. Every write rewrites the file (last writer wins)."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._doc = self._load(path)

    @staticmethod
    def _load(path: Path) -> tomlkit.TOMLDocument:
        if not path.exists():
            return tomlkit.document()
        try:
            return tomlkit.parse(path.read_text(encoding="utf-8"))
        except (TOMLKitError, UnicodeDecodeError) as exc:
            logger.warning("state_file_unreadable", path=str(path), error=str(exc))
            return tomlkit.document()

    def get(self, key: str) -> str | None:
        value = self._doc.get(key)
        # Tables or arrays under a known key are corrupt state, not a value
        if value is None or isinstance(value, (Mapping, list)):
            return None
        return str(value)

    def set(self, key: str, value: str) -> None:
        self._doc[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._doc:
            del self._doc[key]
            self._flush()

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(tomlkit.dumps(self._doc), encoding="utf-8")


def _enum_or_default(enum_cls: type[E], raw: str | None, default: E) -> E:
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        logger.warning("stored_preference_invalid", value=raw, expected=enum_cls.__name__, fallback=default.value)
        return default


class Preferences:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    # -- tenant -------------------------------------------------------------

    @property
    def tenant_id(self) -> str:
        return (self._storage.get(TENANT_KEY) or "").strip() or DEFAULT_TENANT_ID

    def set_tenant_id(self, tenant_id: str) -> None:
        tenant_id = tenant_id.strip()
        if not tenant_id:
            raise ValueError("Tenant id cannot be empty")
        self._storage.set(TENANT_KEY, tenant_id)

    # -- integrations -------------------------------------------------------

    def integration_id(self, provider: str) -> str | None:
        return self._storage.get(f"{provider}_integration_id") or None

    def set_integration_id(self, provider: str, integration_id: str) -> None:
        self._storage.set(f"{provider}_integration_id", integration_id)

    def clear_integration_id(self, provider: str) -> None:
        self._storage.remove(f"{provider}_integration_id")

    def clear_legacy_jira_state(self) -> None:
        for key in LEGACY_JIRA_KEYS:
            self._storage.remove(key)

    # -- issue list view ----------------------------------------------------

    def load_view_preferences(self) -> ViewPreferences:
        """Read filter/sort state; unknown or corrupt values fall back per field."""
        get = self._storage.get
        defaults = ViewPreferences()
        return ViewPreferences(
            type_filter=_enum_or_default(TypeFilter, get(TYPE_FILTER_KEY), defaults.type_filter),
            jira_status_filter=_enum_or_default(
                JiraStatusFilter, get(JIRA_STATUS_FILTER_KEY), defaults.jira_status_filter
            ),
            severity_filter=_enum_or_default(SeverityFilter, get(SEVERITY_FILTER_KEY), defaults.severity_filter),
            team_filter=get(TEAM_FILTER_KEY) or None,
            sort_field=_enum_or_default(SortField, get(SORT_FIELD_KEY), defaults.sort_field),
            sort_direction=_enum_or_default(SortDirection, get(SORT_DIRECTION_KEY), defaults.sort_direction),
        )

    def save_view_preferences(self, prefs: ViewPreferences) -> None:
        self._storage.set(TYPE_FILTER_KEY, prefs.type_filter.value)
        self._storage.set(JIRA_STATUS_FILTER_KEY, prefs.jira_status_filter.value)
        self._storage.set(SEVERITY_FILTER_KEY, prefs.severity_filter.value)
        if prefs.team_filter:
            self._storage.set(TEAM_FILTER_KEY, prefs.team_filter)
        else:
            self._storage.remove(TEAM_FILTER_KEY)
        self._storage.set(SORT_FIELD_KEY, prefs.sort_field.value)
        self._storage.set(SORT_DIRECTION_KEY, prefs.sort_direction.value)
