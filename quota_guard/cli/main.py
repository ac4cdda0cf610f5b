"""
CLI interface for Quota Guard.

Administers keys, evaluates quotas and spending limits, and serves the
gateway.
"""

import sqlite3
import sys
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from quota_guard.audit.actions import AuditAction
from quota_guard.audit.logger import AuditLogger
from quota_guard.config.loader import GatewayConfig, load_gateway_config
from quota_guard.config.logging import configure_logging
from quota_guard.core.alerts import AlertChecker
from quota_guard.core.authorization import check_key_authorization, check_project_permission
from quota_guard.core.permissions import Permission
from quota_guard.core.pricing import calculate_provider_cost, compute_billed_cost, get_model
from quota_guard.core.quota import KeyStatus, get_key_usage_status
from quota_guard.core.spending import SpendingStatus, check_project_limits
from quota_guard.core.token_counter import TokenUsage
from quota_guard.notify.email import EmailSender
from quota_guard.notify.webhook import WebhookSender
from quota_guard.storage.alerts import AlertRepository
from quota_guard.storage.audit import AuditRepository
from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.projects import ProjectRepository, UserRepository
from quota_guard.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

SYSTEM_USER = "system"

_KEY_STATUS_STYLES = {
    KeyStatus.OK: "green",
    KeyStatus.LIMIT_EXCEEDED: "red",
    KeyStatus.INACTIVE: "yellow",
    KeyStatus.EXPIRED: "yellow",
    KeyStatus.NOT_FOUND: "red",
}

_SPENDING_STYLES = {
    SpendingStatus.NORMAL: "green",
    SpendingStatus.WARNING: "yellow",
    SpendingStatus.CRITICAL: "red",
    SpendingStatus.EXCEEDED: "bold red",
}


def _config_option():
    return typer.Option(None, "--config", "-c", help="Path to gateway YAML config")


def _load(config_path: Optional[str]) -> GatewayConfig:
    """Load configuration and set up logging, exiting on invalid config."""
    try:
        config = load_gateway_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    configure_logging(config.logging.level, config.logging.format)
    return config


def _parse_money(value: Optional[str], label: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"{label} must be a number")
    if not amount.is_finite():
        raise typer.BadParameter(f"{label} must be a finite number")
    if amount < 0:
        raise typer.BadParameter(f"{label} must be >= 0")
    return amount


def _format_currency(amount: Optional[Decimal]) -> str:
    """Format money with six decimals; None means no limit."""
    if amount is None:
        return "unlimited"
    return f"${amount:,.6f}"


def _audit(db_path: str) -> AuditLogger:
    return AuditLogger(AuditRepository(db_path))


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Quota Guard CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Quota Guard - Use --help to see available commands")


@app.command()
def init(config_path: Optional[str] = _config_option()):
    """Initialize the Quota Guard database."""
    config = _load(config_path)
    try:
        initialize_schema(config.database.path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("create-key")
def create_key(
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    name: str = typer.Option(..., "--name", "-n", help="Key name"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project id for a project key"),
    daily: Optional[str] = typer.Option(None, "--daily", help="Daily usage limit"),
    monthly: Optional[str] = typer.Option(None, "--monthly", help="Monthly usage limit"),
    total: Optional[str] = typer.Option(None, "--total", help="Lifetime usage limit"),
    expires_in_days: Optional[int] = typer.Option(None, "--expires-in-days", help="Expire the key after N days"),
    config_path: Optional[str] = _config_option(),
):
    """
    Create an API key and print its secret.

    The secret is shown once; only its hash is stored.
    """
    config = _load(config_path)
    db_path = config.database.path
    limits = (
        _parse_money(daily, "--daily"),
        _parse_money(monthly, "--monthly"),
        _parse_money(total, "--total"),
    )
    try:
        if project is not None and not check_project_permission(
            user, project, Permission.API_KEYS_CREATE, ProjectRepository(db_path)
        ):
            console.print(f"[red]Error:[/] Project {project} not found or access denied")
            sys.exit(EXIT_CODE_FAIL)

        key, raw_key = ApiKeyRepository(db_path).create_key(
            user_id=user,
            name=name,
            project_id=project,
            daily_usage_limit=limits[0],
            monthly_usage_limit=limits[1],
            total_usage_limit=limits[2],
            expires=datetime.now() + timedelta(days=expires_in_days) if expires_in_days else None,
        )
        _audit(db_path).log_api_key_action(
            user, AuditAction.APIKEY_CREATED, key.id, {"name": key.name, "projectId": key.project_id}
        )
    except (ValueError, sqlite3.Error) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] Created key [bold]{key.id}[/]")
    console.print(f"Secret (shown once): {raw_key}")
    sys.exit(EXIT_CODE_PASS)


@app.command("key-status")
def key_status(
    key_id: str = typer.Argument(..., help="Key id"),
    config_path: Optional[str] = _config_option(),
):
    """Show a key's spend against its daily, monthly and lifetime limits."""
    config = _load(config_path)
    db_path = config.database.path
    try:
        status = get_key_usage_status(key_id, ApiKeyRepository(db_path), UsageRepository(db_path))
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    style = _KEY_STATUS_STYLES[status.status]
    console.print(f"\n[bold]Key:[/bold] {status.key_id}")
    console.print(f"[bold]Status:[/bold] [{style}]{status.status.value}[/]")

    table = Table()
    table.add_column("Window")
    table.add_column("Usage", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Exceeded")
    for window, usage, limit, exceeded in (
        ("daily", status.usage.daily, status.limits.daily, status.limit_exceeded.daily),
        ("monthly", status.usage.monthly, status.limits.monthly, status.limit_exceeded.monthly),
        ("total", status.usage.total, status.limits.total, status.limit_exceeded.total),
    ):
        table.add_row(
            window,
            _format_currency(usage),
            _format_currency(limit),
            "[red]yes[/]" if exceeded else "no",
        )
    console.print(table)

    sys.exit(EXIT_CODE_FAIL if status.status == KeyStatus.NOT_FOUND else EXIT_CODE_PASS)


def _update_key(
    config_path: Optional[str],
    key_id: str,
    user: str,
    permission: Permission,
    action: AuditAction,
    apply: Callable[[ApiKeyRepository], bool],
    details: dict,
) -> None:
    """Authorize, apply and audit one key change. Failures are audited too."""
    config = _load(config_path)
    db_path = config.database.path
    keys = ApiKeyRepository(db_path)
    audit = _audit(db_path)

    def fail(message: str) -> None:
        audit.log_api_key_action(
            user, AuditAction.APIKEY_UPDATE_FAILED, key_id,
            {"attemptedAction": action.value, "error": message},
        )
        console.print(f"[red]Error:[/] {message}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        if not check_key_authorization(key_id, user, keys, ProjectRepository(db_path), permission):
            fail("API key not found or access denied")
        if not apply(keys):
            fail("API key not found")
    except ValueError as e:
        fail(str(e))
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    audit.log_api_key_action(user, action, key_id, details)
    console.print(f"[green]✓[/] {action.value.replace('_', ' ')}: {key_id}")
    sys.exit(EXIT_CODE_PASS)


@app.command("set-limits")
def set_limits(
    key_id: str = typer.Argument(..., help="Key id"),
    user: str = typer.Option(..., "--user", "-u", help="Acting user id"),
    daily: Optional[str] = typer.Option(None, "--daily", help="Daily usage limit"),
    monthly: Optional[str] = typer.Option(None, "--monthly", help="Monthly usage limit"),
    total: Optional[str] = typer.Option(None, "--total", help="Lifetime usage limit"),
    config_path: Optional[str] = _config_option(),
):
    """Replace a key's limits. Omitted limits are cleared."""
    daily_limit = _parse_money(daily, "--daily")
    monthly_limit = _parse_money(monthly, "--monthly")
    total_limit = _parse_money(total, "--total")
    _update_key(
        config_path, key_id, user, Permission.API_KEYS_UPDATE, AuditAction.APIKEY_LIMITS_MODIFIED,
        lambda keys: keys.update_limits(key_id, daily_limit, monthly_limit, total_limit),
        {
            "dailyUsageLimit": daily,
            "monthlyUsageLimit": monthly,
            "totalUsageLimit": total,
        },
    )


@app.command()
def activate(
    key_id: str = typer.Argument(..., help="Key id"),
    user: str = typer.Option(..., "--user", "-u", help="Acting user id"),
    config_path: Optional[str] = _config_option(),
):
    """Re-enable a deactivated key."""
    _update_key(
        config_path, key_id, user, Permission.API_KEYS_UPDATE, AuditAction.APIKEY_ACTIVATED,
        lambda keys: keys.set_active(key_id, True), {"active": True},
    )


@app.command()
def deactivate(
    key_id: str = typer.Argument(..., help="Key id"),
    user: str = typer.Option(..., "--user", "-u", help="Acting user id"),
    config_path: Optional[str] = _config_option(),
):
    """Temporarily disable a key."""
    _update_key(
        config_path, key_id, user, Permission.API_KEYS_UPDATE, AuditAction.APIKEY_DEACTIVATED,
        lambda keys: keys.set_active(key_id, False), {"active": False},
    )


@app.command()
def revoke(
    key_id: str = typer.Argument(..., help="Key id"),
    user: str = typer.Option(..., "--user", "-u", help="Acting user id"),
    config_path: Optional[str] = _config_option(),
):
    """Permanently revoke a key."""
    _update_key(
        config_path, key_id, user, Permission.API_KEYS_REVOKE, AuditAction.APIKEY_REVOKED,
        lambda keys: keys.revoke(key_id), {"revoked": True},
    )


@app.command("check-limits")
def check_limits(
    user: str = typer.Option(..., "--user", "-u", help="User whose projects are checked"),
    config_path: Optional[str] = _config_option(),
):
    """
    Classify the monthly spend of every limited project a user belongs to.

    Creates a budget alert the first time a project reaches 80% in a month.
    """
    config = _load(config_path)
    db_path = config.database.path
    try:
        result = check_project_limits(
            user,
            ProjectRepository(db_path),
            UsageRepository(db_path),
            AlertRepository(db_path),
            _audit(db_path),
        )
    except sqlite3.Error as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not result.projects:
        console.print("\n[dim]No projects with spending limits found.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Project Spending Limits")
    table.add_column("Project")
    table.add_column("Spend", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Status")
    for spend in result.projects:
        style = _SPENDING_STYLES[spend.status]
        table.add_row(
            spend.project_name,
            _format_currency(spend.current_spend),
            _format_currency(spend.spending_limit),
            f"{spend.percent_used:.1f}%" if spend.percent_used is not None else "-",
            _format_currency(spend.remaining_budget),
            f"[{style}]{spend.status.value}[/]",
        )
    console.print(table)
    console.print(
        f"Near limit: {result.projects_near_limit}  "
        f"Over limit: {result.projects_over_limit}  "
        f"Alerts created: {len(result.alerts_created)}"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command("check-alerts")
def check_alerts(config_path: Optional[str] = _config_option()):
    """Evaluate pending budget alerts and user-defined cost alerts."""
    config = _load(config_path)
    db_path = config.database.path
    audit = _audit(db_path)
    notifications = config.notifications
    email = (
        EmailSender(notifications.smtp_host, notifications.smtp_port, notifications.from_email)
        if notifications.smtp_host
        else None
    )
    checker = AlertChecker(
        UsageRepository(db_path),
        AlertRepository(db_path),
        UserRepository(db_path),
        audit,
        WebhookSender(),
        email,
    )
    try:
        result = checker.run()
    except sqlite3.Error as e:
        audit.log_user_action(SYSTEM_USER, AuditAction.COST_ALERTS_CHECK_FAILED, {"error": "storage error"})
        console.print(f"[red]Error checking alerts:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] Checked {result.alerts_checked} budget alerts and "
        f"{result.cost_alerts_checked} cost alerts; {len(result.triggered)} triggered"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def cost(
    model: str = typer.Argument(..., help="Model identifier"),
    input_tokens: int = typer.Option(0, "--input", "-i", min=0, help="Input tokens"),
    output_tokens: int = typer.Option(0, "--output", "-o", min=0, help="Output tokens"),
    markup: Optional[str] = typer.Option(None, "--markup", help="Markup percent (defaults to config)"),
    config_path: Optional[str] = _config_option(),
):
    """Price a request: provider cost, markup and billed cost."""
    config = _load(config_path)
    model_config = get_model(model)
    if model_config is None:
        console.print(f"[red]Error:[/] Model not found: {model}")
        sys.exit(EXIT_CODE_FAIL)

    markup_percent = _parse_money(markup, "--markup")
    if markup_percent is None:
        markup_percent = config.billing.markup_percent

    provider_cost = calculate_provider_cost(
        model_config, TokenUsage(prompt_tokens=input_tokens, completion_tokens=output_tokens)
    )
    billed = compute_billed_cost(provider_cost, markup_percent)

    console.print(f"\n[bold]{model_config.name}[/bold] ({model_config.provider_id})")
    console.print(f"Provider cost: {_format_currency(billed.provider_cost)}")
    console.print(f"Markup ({markup_percent}%): {_format_currency(billed.markup_amount)}")
    console.print(f"Billed cost: {_format_currency(billed.billed_cost)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
    config_path: Optional[str] = _config_option(),
):
    """Run the gateway HTTP server."""
    import uvicorn

    from quota_guard.gateway.app import create_app

    config = _load(config_path)
    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    app()
