"""Shared pydantic models: the contract between the API client, view-models and main.py."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class IssueType(str, Enum):
    BUG = "bug"
    FEATURE_REQUEST = "feature_request"


class AuthStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool = False
    needs_auth: bool = False
    can_refresh: bool = False
    integration_id: str | None = None
    message: str = ""
    provider: str  # "slack" | "hubspot"
    workspace: str | None = None  # Slack team name
    domain: str | None = None  # HubSpot hub domain
    scopes: list[str] = []

    @model_validator(mode="before")
    @classmethod
    def _connected_is_not_actionable(cls, data: dict) -> dict:
        # A live connection needs neither re-auth nor refresh
        if isinstance(data, dict) and data.get("authenticated"):
            data = {**data, "needs_auth": False, "can_refresh": False}
        return data


class AuthorizationUrl(BaseModel):
    model_config = ConfigDict(frozen=True)

    authorization_url: str
    integration_id: str | None = None

    @field_validator("integration_id", mode="before")
    @classmethod
    def _id_as_str(cls, value: object) -> object:
        return str(value) if value is not None else None


class RefreshResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""


class SourceCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    count: int = Field(default=0, ge=0)


class IssueGroup(BaseModel):
    """One AI-clustered set of raw reports, as computed by the backend."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    summary: str = ""
    severity: float | None = None  # 0-100
    type: IssueType = IssueType.BUG
    confidence: float | None = Field(default=None, ge=0, le=1)
    reasoning: str | None = None
    frequency: int = Field(default=1, ge=1)
    sources: list[SourceCount] = []
    team_id: str | None = None
    updated_at: datetime

    @field_validator("id", "team_id", mode="before")
    @classmethod
    def _ids_as_str(cls, value: object) -> object:
        # UUID columns arrive as strings or ints depending on the endpoint
        return str(value) if value is not None else None

    @field_validator("type", mode="before")
    @classmethod
    def _legacy_type(cls, value: object) -> object:
        if value in (None, ""):
            return IssueType.BUG
        if value == "feature":
            return IssueType.FEATURE_REQUEST
        return value

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_default(cls, value: object) -> object:
        return value or ""

    @property
    def has_jira_source(self) -> bool:
        return any(s.source.lower() == "jira" for s in self.sources)

    @property
    def source_total(self) -> int:
        return sum(s.count for s in self.sources)


class ReportItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    group_id: str
    source: str
    title: str
    url: str | None = None
    external_id: str | None = None  # e.g. Jira key
    created_at: datetime

    @field_validator("id", "group_id", "external_id", mode="before")
    @classmethod
    def _ids_as_str(cls, value: object) -> object:
        return str(value) if value is not None else None

    @property
    def jira_key(self) -> str | None:
        if self.source.lower() == "jira" and self.external_id:
            return self.external_id
        return None


class CreatedTicket(BaseModel):
    """Returned by create_jira_ticket; just what the caller needs to link to it."""

    model_config = ConfigDict(frozen=True)

    ticket_key: str
    ticket_url: str


class Team(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    assignment_criteria: str = ""
    is_default: bool = False

    @model_validator(mode="before")
    @classmethod
    def _default_flag(cls, data: dict) -> dict:
        if isinstance(data, dict) and "is_default_team" in data and "is_default" not in data:
            data = {**data, "is_default": data["is_default_team"]}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: object) -> object:
        return str(value)

    @field_validator("description", "assignment_criteria", mode="before")
    @classmethod
    def _text_default(cls, value: object) -> object:
        return value or ""


class JiraUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str = ""
    email: str | None = None


class JiraStatus(BaseModel):
    """Connection status of one Jira integration (API token or OAuth)."""

    model_config = ConfigDict(frozen=True)

    connected: bool = False
    base_url: str | None = None
    method: str | None = None  # "api_token" | "oauth"
    user: JiraUser | None = None
    error: str | None = None


class SyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    ingested: int = Field(default=0, ge=0)
    message: str = ""


# ---------------------------------------------------------------------------
# Client-local view preferences
# ---------------------------------------------------------------------------


class TypeFilter(str, Enum):
    ALL = "all"
    BUG = "bug"
    FEATURE_REQUEST = "feature_request"


class JiraStatusFilter(str, Enum):
    ALL = "all"
    HAS_TICKET = "has_ticket"
    NO_TICKET = "no_ticket"


class SeverityFilter(str, Enum):
    ALL = "all"
    HIGH = ">=80"
    BELOW_HIGH = "<80"


class SortField(str, Enum):
    SEVERITY = "severity"
    FREQUENCY = "frequency"
    TITLE = "title"
    UPDATED_AT = "updated_at"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def flipped(self) -> "SortDirection":
        return SortDirection.ASC if self is SortDirection.DESC else SortDirection.DESC


class ViewPreferences(BaseModel):
    """Filter and sort state for the issue list, persisted between sessions."""

    model_config = ConfigDict(frozen=True)

    type_filter: TypeFilter = TypeFilter.ALL
    jira_status_filter: JiraStatusFilter = JiraStatusFilter.ALL
    severity_filter: SeverityFilter = SeverityFilter.ALL
    team_filter: str | None = None
    sort_field: SortField = SortField.SEVERITY
    sort_direction: SortDirection = SortDirection.DESC
