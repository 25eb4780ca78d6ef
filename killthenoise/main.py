"""KillTheNoise CLI: all commands."""

import asyncio
from typing import Annotated

import typer
from rich import print as rprint
from rich.markup import escape
from rich.table import Table

from killthenoise.api import ApiClient, ApiError
from killthenoise.auth import AuthController, AuthState, StopReason, open_in_browser
from killthenoise.display import jira_cell, severity_cell, source_icon, truncate, type_cell
from killthenoise.issues import IssueListViewModel, ViewState
from killthenoise.logging_config import configure_logging
from killthenoise.models import JiraStatusFilter, SeverityFilter, SortField, TypeFilter
from killthenoise.preferences import Preferences, TomlStorage
from killthenoise.providers.base import OAuthProvider
from killthenoise.providers.registry import PROVIDERS, get_provider
from killthenoise.settings import CONFIG_PATH, KtnSettings, get_settings
from killthenoise.tickets import TicketForm

app = typer.Typer(help="KillTheNoise: AI-grouped customer issues from Slack, HubSpot and Jira", no_args_is_help=True)

ProviderArg = Annotated[str, typer.Argument(help=f"Provider to connect: {', '.join(PROVIDERS)}")]
LimitOpt = Annotated[int | None, typer.Option("--limit", "-n", min=1, help="Number of issue groups to fetch")]

SYNC_LABELS = {"slack": "Slack", "hubspot": "HubSpot", "jira": "Jira"}
MAX_TEAMS = 10


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def get_preferences(settings: KtnSettings) -> Preferences:
    return Preferences(TomlStorage(settings.state_path))


def build_client(settings: KtnSettings, preferences: Preferences) -> ApiClient:
    return ApiClient(settings, preferences.tenant_id)


def _provider_or_exit(name: str, client: ApiClient) -> OAuthProvider:
    try:
        return get_provider(name, client)
    except ValueError as exc:
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)


def _controller(provider: OAuthProvider, settings: KtnSettings, preferences: Preferences) -> AuthController:
    return AuthController(
        provider,
        preferences=preferences,
        open_popup=open_in_browser,
        poll_interval=settings.poll_interval_seconds,
        poll_timeout=settings.poll_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _render_auth(controller: AuthController) -> None:
    label = controller.provider.label
    status = controller.auth_status
    match controller.state:
        case AuthState.ERROR:
            rprint(f"[red]Error:[/red] {escape(controller.error or '')}")
            rprint(f"  Retry with: ktn status {controller.provider.name}")
        case AuthState.AUTHENTICATED:
            rprint(f"[green]✓[/green] {label} connected")
            if status.workspace:
                rprint(f"  Workspace: {escape(status.workspace)}")
            if status.domain:
                rprint(f"  Domain: {escape(status.domain)}")
            if status.scopes:
                rprint(f"  Scopes: {escape(', '.join(status.scopes))}")
            if status.message:
                rprint(f"  [dim]{escape(status.message)}[/dim]")
        case _ if controller.can_refresh:
            rprint(f"[yellow]⚠ {label} token expired[/yellow], but it can be refreshed.")
            rprint(f"  Run: ktn refresh-token {controller.provider.name}")
        case _:
            rprint(f"{label} is not connected.")
            if status is not None and status.message:
                rprint(f"  [dim]{escape(status.message)}[/dim]")
            rprint(f"  Run: ktn connect {controller.provider.name}")


def _render_issue_table(vm: IssueListViewModel) -> None:
    prefs = vm.prefs
    visible = vm.visible_groups

    table = Table(title=f"AI Issues ({len(visible)} of {len(vm.groups)})")
    table.add_column("ID", style="dim")
    table.add_column("Issue", style="bold")
    table.add_column("Summary")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Jira Ticket")
    table.add_column("Reports", justify="right")

    for group in visible:
        table.add_row(
            escape(group.id),
            escape(group.title),
            escape(truncate(group.summary, 80)),
            type_cell(group),
            severity_cell(group.severity),
            jira_cell(vm.jira_tickets(group.id)),
            str(group.frequency),
        )

    rprint(table)
    if not visible:
        rprint("[dim]No issues match the current filters.[/dim]")

    summary = vm.summary
    avg = "—" if summary.average_severity is None else f"{summary.average_severity:g}"
    rprint(
        f"[dim]{summary.total} issues · {summary.bugs} bugs · {summary.feature_requests} feature requests · "
        f"{summary.critical} critical · {summary.with_jira_ticket} with Jira ticket · avg severity {avg}[/dim]"
    )
    rprint(
        f"[dim]Filters: type={prefs.type_filter.value} jira={prefs.jira_status_filter.value} "
        f"severity={prefs.severity_filter.value} team={prefs.team_filter or 'all'} · "
        f"sort={prefs.sort_field.value} {prefs.sort_direction.value}[/dim]"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.callback()
def main(verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")] = False) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level, settings.log_format)


@app.command("issues")
def issues_cmd(
    type_filter: Annotated[TypeFilter | None, typer.Option("--type", help="Issue type filter")] = None,
    jira: Annotated[JiraStatusFilter | None, typer.Option("--jira", help="Jira ticket presence filter")] = None,
    severity: Annotated[SeverityFilter | None, typer.Option("--severity", help="Severity threshold filter")] = None,
    team: Annotated[str | None, typer.Option("--team", help="Team id to show, or 'all'")] = None,
    sort: Annotated[
        SortField | None,
        typer.Option("--sort", help="Sort field; giving the current field again flips the direction"),
    ] = None,
    limit: LimitOpt = None,
) -> None:
    """List AI-grouped issues. Filter and sort choices are remembered."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            vm = IssueListViewModel(client, preferences, limit=limit or settings.issue_limit)
            if type_filter is not None:
                vm.set_filter("type", type_filter.value)
            if jira is not None:
                vm.set_filter("jira_status", jira.value)
            if severity is not None:
                vm.set_filter("severity", severity.value)
            if team is not None:
                vm.set_filter("team", None if team.lower() == "all" else team)
            if sort is not None:
                vm.set_sort(sort)

            await vm.fetch_groups()
            await vm.wait_for_reports()

            match vm.view_state:
                case ViewState.ERROR:
                    rprint(f"[red]{escape(vm.error)}[/red]")
                    rprint("  Retry with: ktn issues")
                    raise typer.Exit(1)
                case ViewState.EMPTY:
                    rprint("No AI issues yet. Try syncing your integrations, then run: ktn issues")
                case _:
                    _render_issue_table(vm)
            await vm.close()

    asyncio.run(run())


@app.command("reports")
def reports_cmd(
    group_id: Annotated[str, typer.Argument(help="Issue group ID")],
) -> None:
    """Show the raw reports that make up one issue group."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            vm = IssueListViewModel(client, preferences)
            state = await vm.fetch_reports(group_id)

        if state.error:
            rprint(f"[red]{escape(state.error)}[/red]")
            raise typer.Exit(1)
        if not state.items:
            rprint("No contributing reports found.")
            return

        table = Table(title=f"Reports for {escape(group_id)}")
        table.add_column("")
        table.add_column("Title", style="bold")
        table.add_column("Source")
        table.add_column("External ID", style="cyan")
        table.add_column("Created")
        table.add_column("URL", style="dim")
        for item in state.items:
            table.add_row(
                source_icon(item.source),
                escape(item.title),
                escape(item.source.capitalize()),
                escape(item.external_id or "—"),
                item.created_at.strftime("%Y-%m-%d %H:%M"),
                escape(item.url or "—"),
            )
        rprint(table)

    asyncio.run(run())


@app.command("status")
def status_cmd(
    provider: Annotated[str, typer.Argument(help=f"Integration to check: {', '.join([*PROVIDERS, 'jira'])}")],
    integration_id: Annotated[
        str | None, typer.Option("--integration-id", help="Jira integration id (remembered for later commands)")
    ] = None,
) -> None:
    """Show the connection status of an integration."""
    settings = get_settings()
    preferences = get_preferences(settings)
    if provider.strip().lower() == "jira":
        _jira_status(settings, preferences, integration_id)
        return

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            controller = _controller(_provider_or_exit(provider, client), settings, preferences)
            await controller.check_auth()
        _render_auth(controller)
        if controller.state is AuthState.ERROR:
            raise typer.Exit(1)

    asyncio.run(run())


def _jira_integration_or_exit(preferences: Preferences, integration_id: str | None) -> str:
    if integration_id:
        preferences.set_integration_id("jira", integration_id)
        return integration_id
    stored = preferences.integration_id("jira")
    if stored is None:
        rprint("[red]No Jira integration configured.[/red] Pass --integration-id ID")
        raise typer.Exit(1)
    return stored


def _jira_status(settings: KtnSettings, preferences: Preferences, integration_id: str | None) -> None:
    integration_id = _jira_integration_or_exit(preferences, integration_id)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                status = await client.get_jira_status(integration_id)
            except ApiError as exc:
                rprint(f"[red]Error:[/red] {escape(str(exc))}")
                rprint("  Retry with: ktn status jira")
                raise typer.Exit(1)

        if not status.connected:
            rprint("Jira is not connected.")
            if status.error:
                rprint(f"  [dim]{escape(status.error)}[/dim]")
            return
        rprint("[green]✓[/green] Jira connected")
        if status.base_url:
            rprint(f"  Base URL: {escape(status.base_url)}")
        if status.user:
            email = f" ({status.user.email})" if status.user.email else ""
            rprint(f"  User: {escape(status.user.display_name + email)}")
        if status.method:
            rprint(f"  Method: {escape(status.method)}")

    asyncio.run(run())


@app.command("connect")
def connect_cmd(provider: ProviderArg) -> None:
    """Open the provider's authorization page and wait until the connection completes."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            controller = _controller(_provider_or_exit(provider, client), settings, preferences)
            await controller.check_auth()
            if controller.state is AuthState.AUTHENTICATED:
                _render_auth(controller)
                return
            if controller.state is AuthState.ERROR:
                _render_auth(controller)
                raise typer.Exit(1)

            try:
                if not await controller.connect():
                    rprint(f"[red]{escape(controller.error or '')}[/red]")
                    raise typer.Exit(1)
                rprint(f"Waiting for {controller.provider.label} authorization in your browser…")
                reason = await controller.wait_for_polling()
            finally:
                await controller.close()

        if reason is StopReason.TIMEOUT:
            rprint("[yellow]Timed out waiting for authorization.[/yellow]")
        _render_auth(controller)
        if controller.state is not AuthState.AUTHENTICATED:
            raise typer.Exit(1)

    asyncio.run(run())


@app.command("refresh-token")
def refresh_token_cmd(provider: ProviderArg) -> None:
    """Refresh an expired provider token."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            controller = _controller(_provider_or_exit(provider, client), settings, preferences)
            await controller.check_auth()
            if controller.integration_id is None:
                rprint(f"[red]No {controller.provider.label} integration to refresh.[/red] Run: ktn connect {provider}")
                raise typer.Exit(1)
            ok = await controller.refresh_token()

        if not ok:
            rprint(f"[red]{escape(controller.error or 'Failed to refresh token')}[/red]")
            raise typer.Exit(1)
        rprint("[green]✓[/green] Token refreshed")
        _render_auth(controller)

    asyncio.run(run())


@app.command("create-ticket")
def create_ticket_cmd(
    group_id: Annotated[str, typer.Argument(help="Issue group ID")],
    title: Annotated[str | None, typer.Option("--title", "-t", help="Ticket title (default: group title)")] = None,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Ticket description (default: group summary)")
    ] = None,
    generate: Annotated[
        bool, typer.Option("--generate", "-g", help="Write the description with AI (template fallback)")
    ] = False,
    limit: LimitOpt = None,
) -> None:
    """Create a Jira ticket from an issue group."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            vm = IssueListViewModel(client, preferences, limit=limit or settings.issue_limit)
            await vm.fetch_groups()
            if vm.error:
                rprint(f"[red]{escape(vm.error)}[/red]")
                raise typer.Exit(1)
            group = next((g for g in vm.groups if g.id == group_id), None)
            if group is None:
                rprint(f"[red]Issue group '{escape(group_id)}' not found in the latest {vm.limit} groups.[/red] Try --limit.")
                await vm.close()
                raise typer.Exit(1)

            form = TicketForm(client, vm)
            form.open(group)
            if title is not None:
                form.title = title
            if generate:
                await form.generate_description()
            elif description is not None:
                form.description = description
            created = await form.submit()
            await vm.close()

        if form.field_errors:
            for field, message in form.field_errors.items():
                rprint(f"[red]{field}:[/red] {escape(message)}")
            raise typer.Exit(1)
        if created is None:
            rprint(f"[red]{escape(form.error or 'Failed to create ticket')}[/red]")
            raise typer.Exit(1)
        rprint(f"[green]✓[/green] Jira ticket created: [bold]{escape(created.ticket_key)}[/bold]")
        rprint(f"  {escape(created.ticket_url)}")

    asyncio.run(run())


@app.command("sync")
def sync_cmd(
    provider: Annotated[str, typer.Argument(help=f"Integration to pull reports from: {', '.join(SYNC_LABELS)}")],
    days: Annotated[int, typer.Option("--days", min=1, help="Slack: days of channel history to read")] = 7,
    integration_id: Annotated[str | None, typer.Option("--integration-id", help="Jira integration id")] = None,
    incremental: Annotated[
        bool, typer.Option("--incremental", help="Jira: only issues changed since the last sync")
    ] = False,
) -> None:
    """Pull new customer reports from an integration into the backend."""
    settings = get_settings()
    preferences = get_preferences(settings)
    name = provider.strip().lower()
    if name not in SYNC_LABELS:
        rprint(f"[red]Unknown provider '{escape(provider)}'. Valid: {', '.join(SYNC_LABELS)}[/red]")
        raise typer.Exit(1)
    jira_id = _jira_integration_or_exit(preferences, integration_id) if name == "jira" else None

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                match name:
                    case "slack":
                        result = await client.sync_slack(days)
                    case "jira":
                        result = await client.sync_jira(jira_id, "incremental" if incremental else "full")
                    case _:
                        result = await client.sync_hubspot()
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)

        rprint(f"[green]✓[/green] {SYNC_LABELS[name]} sync complete: {result.ingested} new reports")
        if result.message:
            rprint(f"  [dim]{escape(result.message)}[/dim]")
        rprint("  Run: ktn issues")

    asyncio.run(run())


@app.command("teams")
def teams_cmd() -> None:
    """List the tenant's teams."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                teams = await client.list_teams()
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)

        if not teams:
            rprint("No teams configured.")
            return
        table = Table(title="Teams")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Default")
        table.add_column("Assignment criteria", style="dim")
        for t in teams:
            table.add_row(
                escape(t.id),
                escape(t.name),
                "✓" if t.is_default else "",
                escape(truncate(t.assignment_criteria, 60)),
            )
        rprint(table)

    asyncio.run(run())


@app.command("create-team")
def create_team_cmd(
    name: Annotated[str, typer.Argument(help="Team name")],
    criteria: Annotated[
        str, typer.Option("--criteria", "-c", help="Which issues this team owns, used for AI assignment")
    ],
    description: Annotated[str, typer.Option("--description", "-d", help="Team description")] = "",
    default: Annotated[bool, typer.Option("--default", help="Make this the default team")] = False,
) -> None:
    """Create a team."""
    settings = get_settings()
    preferences = get_preferences(settings)
    if not name.strip() or not criteria.strip():
        rprint("[red]Team name and assignment criteria are required[/red]")
        raise typer.Exit(1)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                if len(await client.list_teams()) >= MAX_TEAMS:
                    rprint(f"[red]Maximum of {MAX_TEAMS} teams allowed[/red]")
                    raise typer.Exit(1)
                team = await client.create_team(
                    name.strip(), criteria.strip(), description=description.strip(), is_default=default
                )
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)
        rprint(f"[green]✓[/green] Team created: [bold]{escape(team.name)}[/bold] ({escape(team.id)})")

    asyncio.run(run())


@app.command("update-team")
def update_team_cmd(
    team_id: Annotated[str, typer.Argument(help="Team ID")],
    name: Annotated[str | None, typer.Option("--name", help="New team name")] = None,
    criteria: Annotated[str | None, typer.Option("--criteria", "-c", help="New assignment criteria")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d", help="New description")] = None,
) -> None:
    """Change a team's name, criteria or description."""
    settings = get_settings()
    preferences = get_preferences(settings)
    fields = {
        key: value.strip()
        for key, value in (("name", name), ("assignment_criteria", criteria), ("description", description))
        if value is not None
    }
    if not fields:
        rprint("[red]Nothing to update.[/red] Pass --name, --criteria or --description")
        raise typer.Exit(1)
    if fields.get("name") == "" or fields.get("assignment_criteria") == "":
        rprint("[red]Team name and assignment criteria are required[/red]")
        raise typer.Exit(1)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                team = await client.update_team(team_id, **fields)
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)
        rprint(f"[green]✓[/green] Team updated: [bold]{escape(team.name)}[/bold]")

    asyncio.run(run())


@app.command("delete-team")
def delete_team_cmd(
    team_id: Annotated[str, typer.Argument(help="Team ID")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
) -> None:
    """Delete a team."""
    settings = get_settings()
    preferences = get_preferences(settings)
    if not yes and not typer.confirm(f"Delete team {team_id}?", default=False):
        raise typer.Exit(1)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                await client.delete_team(team_id)
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)
        prefs = preferences.load_view_preferences()
        if prefs.team_filter == team_id:
            preferences.save_view_preferences(prefs.model_copy(update={"team_filter": None}))
        rprint(f"[green]✓[/green] Team {escape(team_id)} deleted")

    asyncio.run(run())


@app.command("set-default-team")
def set_default_team_cmd(team_id: Annotated[str, typer.Argument(help="Team ID")]) -> None:
    """Make a team the default for newly grouped issues."""
    settings = get_settings()
    preferences = get_preferences(settings)

    async def run() -> None:
        async with build_client(settings, preferences) as client:
            try:
                await client.set_default_team(team_id)
            except ApiError as exc:
                rprint(f"[red]{escape(str(exc))}[/red]")
                raise typer.Exit(1)
        rprint(f"[green]✓[/green] Default team set to {escape(team_id)}")

    asyncio.run(run())


@app.command("set-tenant")
def set_tenant(tenant_id: Annotated[str, typer.Argument(help="Tenant ID to use for all requests")]) -> None:
    """Switch the active tenant."""
    settings = get_settings()
    preferences = get_preferences(settings)
    try:
        preferences.set_tenant_id(tenant_id)
    except ValueError as exc:
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)
    rprint(f'[green]✓[/green] Tenant set to "{escape(preferences.tenant_id)}" in {settings.state_path}')


@app.command("config-show")
def config_show() -> None:
    """Show resolved configuration and remembered view state."""
    settings = get_settings()
    preferences = get_preferences(settings)
    prefs = preferences.load_view_preferences()

    def unset(val: str | None) -> str:
        return escape(val) if val else "[dim](not set)[/dim]"

    table = Table(title="KillTheNoise Configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("config_file", str(CONFIG_PATH))
    table.add_row("state_file", str(settings.state_path))
    table.add_row("api_base", settings.api_base)
    table.add_row("tenant_id", escape(preferences.tenant_id))
    for name in PROVIDERS:
        table.add_row(f"{name}_integration_id", unset(preferences.integration_id(name)))
    table.add_row("issue_limit", str(settings.issue_limit))
    table.add_row("poll_interval_seconds", f"{settings.poll_interval_seconds:g}")
    table.add_row("poll_timeout_seconds", f"{settings.poll_timeout_seconds:g}")
    table.add_row("type_filter", prefs.type_filter.value)
    table.add_row("jira_status_filter", prefs.jira_status_filter.value)
    table.add_row("severity_filter", prefs.severity_filter.value)
    table.add_row("team_filter", unset(prefs.team_filter))
    table.add_row("sort", f"{prefs.sort_field.value} {prefs.sort_direction.value}")

    rprint(table)
