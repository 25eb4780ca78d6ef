"""Jira ticket creation from an AI issue group."""

import structlog

from killthenoise.api import ApiClient, ApiError
from killthenoise.issues import IssueListViewModel
from killthenoise.models import CreatedTicket, IssueGroup

logger = structlog.get_logger(__name__)


class TicketValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


def ticket_field_errors(title: str, description: str) -> dict[str, str]:
    errors = {}
    if not (title or "").strip():
        errors["title"] = "Title is required"
    if not (description or "").strip():
        errors["description"] = "Description is required"
    return errors


def validate_ticket_fields(title: str, description: str) -> tuple[str, str]:
    """Return the trimmed (title, description) or raise for the first empty field."""
    errors = ticket_field_errors(title, description)
    if errors:
        field, message = next(iter(errors.items()))
        raise TicketValidationError(field, message)
    return title.strip(), description.strip()


def template_description(group: IssueGroup) -> str:
    """Deterministic description used whenever the AI description service is unavailable."""
    summary = group.summary.strip() or group.title
    return "\n".join(
        [
            "User Story:",
            f"- As a **user** I want **{group.title}** addressed in order to **resolve the reported issues "
            "and improve user experience**.",
            "",
            "Acceptance Criteria:",
            "- Investigate and identify the root cause of the reported issue",
            "- Implement a solution that addresses the core problem",
            "- Test the fix to ensure it resolves the issue without introducing new problems",
            "- Deploy the solution to production environment",
            "- Verify that the issue is resolved and document the changes",
            "",
            "Additional Info:",
            f"- Original issue summary: {summary}",
            f"- Reported {group.frequency} time(s)"
            + (f" via {', '.join(s.source for s in group.sources)}" if group.sources else ""),
            "- This ticket was auto-generated from an AI-detected issue group",
            "- Priority should be based on severity and impact assessment",
        ]
    )


async def generate_description(client: ApiClient, group: IssueGroup) -> str:
    """AI-written description, falling back to the template. Never raises ApiError."""
    try:
        description = await client.generate_jira_description(group.title, group.summary)
    except ApiError as exc:
        logger.warning("ai_description_unavailable", group_id=group.id, error=str(exc))
        return template_description(group)
    return description.strip() or template_description(group)


async def create_ticket(client: ApiClient, group_id: str, title: str, description: str) -> CreatedTicket:
    title, description = validate_ticket_fields(title, description)
    ticket = await client.create_jira_ticket(group_id, title, description)
    logger.info("jira_ticket_created", group_id=group_id, ticket_key=ticket.ticket_key)
    return ticket


class TicketForm:
    """State for the "Create Jira ticket" form of one issue group."""

    def __init__(self, client: ApiClient, issue_list: IssueListViewModel | None = None) -> None:
        self._client = client
        self._issue_list = issue_list
        self.group: IssueGroup | None = None
        self.title = ""
        self.description = ""
        self.field_errors: dict[str, str] = {}
        self.error: str | None = None
        self.loading = False
        self.generating_description = False
        self.created: CreatedTicket | None = None

    def open(self, group: IssueGroup) -> None:
        self.group = group
        self.title = group.title
        self.description = group.summary
        self.field_errors = {}
        self.error = None
        self.created = None

    def reset(self) -> None:
        self.group = None
        self.title = ""
        self.description = ""
        self.field_errors = {}
        self.error = None
        self.created = None

    async def generate_description(self) -> None:
        if self.group is None:
            return
        self.generating_description = True
        self.error = None
        try:
            self.description = await generate_description(self._client, self.group)
        finally:
            self.generating_description = False

    async def submit(self) -> CreatedTicket | None:
        if self.group is None:
            return None
        self.error = None
        self.field_errors = ticket_field_errors(self.title, self.description)
        if self.field_errors:
            return None

        self.loading = True
        try:
            self.created = await create_ticket(self._client, self.group.id, self.title, self.description)
        except ApiError as exc:
            logger.warning("jira_ticket_create_failed", group_id=self.group.id, error=str(exc))
            self.error = str(exc) or "Failed to create ticket"
            return None
        finally:
            self.loading = False

        if self._issue_list is not None:
            # New ticket shows up in the Jira column without a full group refresh
            await self._issue_list.fetch_reports(self.group.id, force=True)
        return self.created
