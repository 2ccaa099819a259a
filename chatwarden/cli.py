# -*- coding: utf-8 -*-
"""Location: ./chatwarden/cli.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

chatwarden command line interface.

Usage:
    chatwarden run
    chatwarden check-config --json-output
    chatwarden grant 1234 perm --user 5678
"""

# Standard
import asyncio
import logging
from typing import List, Optional

# Third-Party
import orjson
import typer

# First-Party
from chatwarden import __version__
from chatwarden.commands import builtin_commands
from chatwarden.config import get_settings
from chatwarden.errors import ConfigurationError, StorageUnavailable
from chatwarden.main import ChatWardenApp
from chatwarden.models import PolicyChange
from chatwarden.services.command_registry import CommandRegistry
from chatwarden.services.execution_policy import ExecutionPolicy
from chatwarden.services.storage_service import SqlAlchemyStore

logger = logging.getLogger(__name__)

app = typer.Typer(name="chatwarden", help="Chat command bot with guarded script execution")


@app.command()
def run() -> None:
    """Start the bot and run until interrupted."""
    asyncio.run(ChatWardenApp(get_settings()).run())


@app.command("check-config")
def check_config(json_output: bool = typer.Option(False, help="Output in JSON format")) -> None:
    """Validate the configuration without connecting to the chat platform."""
    settings = get_settings()
    registry = CommandRegistry(SqlAlchemyStore(settings.database_url), builtin_commands())
    problems: List[str] = []
    try:
        registry.validate_initial_grants(settings.init_allow_commands)
    except ConfigurationError as e:
        problems.append(str(e))
    if not settings.bot_token:
        problems.append("BOT_TOKEN is not configured")

    summary = {
        "version": __version__,
        "database_url": settings.database_url,
        "command_prefix": "" if settings.prefixless_commands else settings.command_prefix,
        "init_allow_commands": settings.init_allow_commands,
        "builtins": registry.builtin_names,
        "script_limits": {
            "timeout_ms": settings.sandbox_timeout_ms,
            "max_memory_mb": settings.sandbox_max_memory_mb,
            "max_output_chars": settings.sandbox_max_output_chars,
        },
        "problems": problems,
    }
    if json_output:
        typer.echo(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode())
    else:
        typer.echo(f"chatwarden {__version__}")
        typer.echo("=" * 40)
        typer.echo(f"Database: {summary['database_url']}")
        typer.echo(f"Prefix: {summary['command_prefix'] or '(none)'}")
        typer.echo(f"Initial grants: {', '.join(settings.init_allow_commands) or '(none)'}")
        typer.echo(f"Built-ins: {', '.join(registry.builtin_names)}")
        for problem in problems:
            typer.echo(f"ERROR: {problem}", err=True)
    if problems:
        raise typer.Exit(code=1)


@app.command()
def grant(
    tenant_id: str = typer.Argument(..., help="Tenant (server) id"),
    command: str = typer.Argument(..., help="Built-in command name"),
    user: Optional[List[str]] = typer.Option(None, "--user", help="User id to grant"),
    group: Optional[List[str]] = typer.Option(None, "--group", help="Group (role) id to grant"),
    revoke: bool = typer.Option(False, help="Remove the members instead of adding them"),
) -> None:
    """Edit a permission rule set directly in the durable store."""
    if not user and not group:
        typer.echo("Give at least one --user or --group", err=True)
        raise typer.Exit(code=2)
    if command not in {spec.name for spec in builtin_commands()}:
        typer.echo(f"Unknown built-in command '{command}'", err=True)
        raise typer.Exit(code=2)

    async def _grant() -> None:
        settings = get_settings()
        store = SqlAlchemyStore(settings.database_url)
        await store.connect()
        try:
            policy = ExecutionPolicy(store)
            await policy.load_permissions()
            change = PolicyChange.revoke(user, group) if revoke else PolicyChange.grant(user, group)
            updated = await policy.change(tenant_id, command, change)
            typer.echo(orjson.dumps({"tenant": tenant_id, "command": command, **updated.to_dict()}).decode())
        finally:
            await store.close()

    try:
        asyncio.run(_grant())
    except StorageUnavailable as e:
        logger.error(f"Error updating permissions: {e}")
        typer.echo(f"Storage error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """Print the chatwarden version."""
    typer.echo(__version__)


if __name__ == "__main__":
    app()
