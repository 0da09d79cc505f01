"""Command-line interface using Typer."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from social_link import __version__
from social_link.domain.errors import SocialLinkError
from social_link.logging import setup_logging

# Setup logging
setup_logging()

app = typer.Typer(
    name="social-link",
    help="Social Link - social account connections and token lifecycle CLI",
    add_completion=False,
)

# Subcommand groups
accounts_app = typer.Typer(help="Connected account commands")
app.add_typer(accounts_app, name="accounts")

console = Console()

STATUS_STYLES = {
    "active": "green",
    "token_refreshing": "cyan",
    "pending_auth": "blue",
    "rate_limited": "yellow",
    "token_expired": "yellow",
    "error": "red",
    "disconnected": "dim",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Social Link v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Social Link - link social accounts and keep their tokens fresh."""
    pass


def _fail(error: SocialLinkError) -> None:
    console.print(f"[bold red]✗ {error.code}:[/bold red] {error.message}")
    raise typer.Exit(code=1)


def _services():
    from social_link.services.container import get_container

    return get_container()


def _status_text(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


@app.command()
def version() -> None:
    """Show the installed version."""
    console.print(f"Social Link v{__version__}")


@app.command("init-db")
def init_db_command() -> None:
    """Create the tables directly (development; use alembic elsewhere)."""
    from social_link.db.session import init_db

    init_db(create_tables=True)
    console.print("[bold green]✓ Database initialized[/bold green]")


@app.command()
def connect(
    platform: str = typer.Argument(
        ..., help="facebook, instagram, twitter, linkedin, tiktok or youtube"
    ),
    user: str = typer.Option(..., "--user", "-u", help="User ID that owns the connection"),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request (repeatable)"
    ),
    reconnect: Optional[str] = typer.Option(
        None, "--reconnect", help="Existing connection ID to reconnect in place"
    ),
) -> None:
    """Start a connect flow and print the consent URL."""
    try:
        start = _services().authorization.initiate(
            user, platform, scopes=scope or None, connection_id=reconnect
        )
    except SocialLinkError as e:
        _fail(e)

    console.print("[bold blue]Open this URL to authorize:[/bold blue]")
    console.print(start.authorize_url, soft_wrap=True)
    console.print(f"[dim]State expires at {start.expires_at.isoformat()}[/dim]")


@app.command()
def complete(
    platform: str = typer.Argument(..., help="Platform the callback came from"),
    code: str = typer.Option(..., "--code", help="Authorization code from the callback"),
    state: str = typer.Option(..., "--state", help="State from the callback"),
) -> None:
    """Complete a connect flow with a callback's code and state."""
    try:
        record = _services().authorization.handle_callback(platform, code, state)
    except SocialLinkError as e:
        _fail(e)

    console.print(
        f"[bold green]✓ Connected {record.platform} account "
        f"{record.external_account_handle or record.external_account_id}[/bold green]"
    )
    console.print(f"  Connection ID: {record.id}")


@app.command()
def sweep() -> None:
    """Run one refresh sweep inline."""
    result = _services().scheduler.sweep()
    console.print(
        f"[bold green]✓ Sweep complete:[/bold green] "
        f"{len(result.expired)} expired, {len(result.recovered)} recovered, "
        f"{result.dispatched_count} refreshed"
    )


@app.command()
def purge() -> None:
    """Delete expired authorization requests."""
    purged = _services().authorization.purge_expired_requests()
    console.print(f"[bold green]✓ Purged {purged} expired authorization request(s)[/bold green]")


@app.command("generate-key")
def generate_key() -> None:
    """Generate a new ENCRYPTION_MASTER_KEY."""
    from social_link.services.encryption import generate_master_key

    console.print(generate_master_key())


@app.command("rotate-key")
def rotate_key(
    old_key: str = typer.Option(..., "--old-key", help="Key the tokens are encrypted with now"),
    new_key: str = typer.Option(..., "--new-key", help="Key to re-encrypt the tokens with"),
) -> None:
    """Re-encrypt every stored token with a new master key."""
    from sqlalchemy import or_, select

    from social_link.db.models import SocialAccountConnectionModel
    from social_link.db.session import session_scope
    from social_link.services.encryption import rotate_token_encryption

    services = _services()
    rotated = 0
    try:
        with session_scope(services.session_factory) as session:
            records = (
                session.execute(
                    select(SocialAccountConnectionModel).where(
                        or_(
                            SocialAccountConnectionModel.encrypted_access_token.is_not(None),
                            SocialAccountConnectionModel.encrypted_refresh_token.is_not(None),
                        )
                    )
                )
                .scalars()
                .all()
            )
            for record in records:
                if record.encrypted_access_token:
                    record.encrypted_access_token = rotate_token_encryption(
                        record.encrypted_access_token, old_key, new_key
                    )
                if record.encrypted_refresh_token:
                    record.encrypted_refresh_token = rotate_token_encryption(
                        record.encrypted_refresh_token, old_key, new_key
                    )
                rotated += 1
    except SocialLinkError as e:
        _fail(e)

    console.print(f"[bold green]✓ Re-encrypted tokens for {rotated} connection(s)[/bold green]")
    console.print("[dim]Set ENCRYPTION_MASTER_KEY to the new key before restarting.[/dim]")


@app.command()
def health() -> None:
    """Check the health of the running API."""
    import httpx

    from social_link.config import settings

    url = f"http://{settings.api_host}:{settings.api_port}/health/ready"

    try:
        response = httpx.get(url, timeout=10)
        data = response.json()

        table = Table(title="Service Health")
        table.add_column("Component", style="cyan")
        table.add_column("Status")

        table.add_row("Database", "✓" if data.get("database") else "✗")
        table.add_row("Encryption", "✓" if data.get("encryption") else "✗")
        redis_label = "Redis" if data.get("redis_required") else "Redis (optional)"
        table.add_row(redis_label, "✓" if data.get("redis") else "✗")

        console.print(table)

        if data.get("ready"):
            console.print("[bold green]All services healthy![/bold green]")
        else:
            console.print("[bold yellow]Some services unhealthy[/bold yellow]")
            raise typer.Exit(code=1)

    except httpx.RequestError as e:
        console.print(f"[bold red]Cannot connect to API: {e}[/bold red]")
        console.print("[dim]Is the API server running?[/dim]")
        raise typer.Exit(code=1)


@app.command()
def worker() -> None:
    """Start a Celery worker with the beat scheduler (for development)."""
    console.print("[bold blue]Starting Celery worker...[/bold blue]")

    import subprocess
    import sys

    subprocess.run(
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "social_link.worker",
            "worker",
            "--beat",
            "--loglevel=info",
            "-Q",
            "default,refresh",
        ],
        check=True,
    )


# =============================================================================
# ACCOUNTS COMMANDS
# =============================================================================


@accounts_app.command("list")
def accounts_list(
    user: str = typer.Option(..., "--user", "-u", help="User ID"),
    all_: bool = typer.Option(False, "--all", "-a", help="Include disconnected accounts"),
) -> None:
    """List a user's connected accounts."""
    summaries = _services().registry.list(user, include_disconnected=all_)

    if not summaries:
        console.print("[dim]No connected accounts.[/dim]")
        return

    table = Table(title=f"Accounts for {user}")
    table.add_column("ID", style="dim")
    table.add_column("Platform", style="cyan")
    table.add_column("Account")
    table.add_column("Status")
    table.add_column("Expires")
    table.add_column("Last error", style="red")

    for s in summaries:
        table.add_row(
            str(s.id),
            str(s.platform),
            s.external_account_handle or s.external_account_id or "-",
            _status_text(str(s.status)),
            s.token_expires_at.strftime("%Y-%m-%d %H:%M") if s.token_expires_at else "-",
            s.last_error or "",
        )

    console.print(table)


@accounts_app.command("show")
def accounts_show(
    connection_id: str = typer.Argument(..., help="Connection ID"),
) -> None:
    """Show one connection."""
    try:
        summary = _services().registry.get(connection_id)
    except SocialLinkError as e:
        _fail(e)

    for key, value in summary.to_dict().items():
        console.print(f"[cyan]{key}:[/cyan] {value if value is not None else '-'}")


@accounts_app.command("refresh")
def accounts_refresh(
    connection_id: str = typer.Argument(..., help="Connection ID"),
) -> None:
    """Refresh a connection's access token now."""
    try:
        record = _services().token_store.refresh(connection_id, manual=True)
    except SocialLinkError as e:
        _fail(e)

    expires = record.token_expires_at.isoformat() if record.token_expires_at else "never"
    console.print(f"[bold green]✓ Refreshed; token expires {expires}[/bold green]")


@accounts_app.command("disconnect")
def accounts_disconnect(
    connection_id: str = typer.Argument(..., help="Connection ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Revoke and disconnect a connection."""
    if not yes:
        typer.confirm(f"Disconnect {connection_id}?", abort=True)

    try:
        _services().disconnect.disconnect(connection_id)
    except SocialLinkError as e:
        _fail(e)

    console.print(f"[bold green]✓ Disconnected {connection_id}[/bold green]")


if __name__ == "__main__":
    app()
