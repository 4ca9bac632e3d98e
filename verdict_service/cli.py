# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Verdict Service CLI (verdict-service)
Run answering agents, the commit service, and one-shot commits.
"""

import asyncio
import json

import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import VerdictServiceConfig
from .errors import VerdictServiceError, error_payload
from .identity import AgentIdentity
from .lifecycle import LifecycleController
from .logging_utils import configure_logging
from .timelock import load_encryptor

app = typer.Typer(name="verdict-service", help="Verdict commitment and answer coordination service", no_args_is_help=True)
console = Console()


def _load_config(ctx: typer.Context) -> VerdictServiceConfig:
    config_file = ctx.obj.get("config_file") if ctx.obj else None
    config = VerdictServiceConfig.from_file(config_file) if config_file else VerdictServiceConfig()
    configure_logging(ctx.obj.get("log_level") or config.log_level)
    return config


def _fail(e: Exception) -> None:
    payload = error_payload(e)
    rprint(f"[red]Error ({payload['error']}): {escape(payload['detail'])}[/red]")
    raise typer.Exit(1) from e


def _emit(ctx: typer.Context, data: dict, title: str) -> None:
    if ctx.obj.get("output_format") == "json":
        console.print_json(json.dumps(data, default=str))
        return
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)


@app.command()
def agent(ctx: typer.Context):
    """Run the answering agent poll loop until SIGINT/SIGTERM"""
    try:
        config = _load_config(ctx)
        controller = LifecycleController.from_config(config, run_agent=True)
        asyncio.run(controller.run_until_signalled())
    except VerdictServiceError as e:
        _fail(e)


@app.command("poll-once")
def poll_once(ctx: typer.Context):
    """Run a single poll cycle and print its summary"""

    async def _run():
        controller = LifecycleController.from_config(config, run_agent=True)
        try:
            return await controller.coordinator.poll_once()
        finally:
            await controller.shutdown()

    try:
        config = _load_config(ctx)
        summary = asyncio.run(_run())
    except VerdictServiceError as e:
        _fail(e)
    _emit(ctx, summary.to_dict(), "Poll Summary")


@app.command()
def serve(
    ctx: typer.Context,
    encryptor: str = typer.Option(..., "--encryptor", "-e", help="Timelock encryptor as module:attribute"),
    with_agent: bool = typer.Option(False, "--with-agent", help="Also run the answering agent in this process"),
):
    """Run the commit service and reveal listener until SIGINT/SIGTERM"""
    try:
        config = _load_config(ctx)
        controller = LifecycleController.from_config(config, encryptor=load_encryptor(encryptor), run_agent=with_agent)
        asyncio.run(controller.run_until_signalled())
    except VerdictServiceError as e:
        _fail(e)


@app.command()
def commit(
    ctx: typer.Context,
    verdict: str = typer.Argument(..., help="Verdict plaintext"),
    encryptor: str = typer.Option(..., "--encryptor", "-e", help="Timelock encryptor as module:attribute"),
    delay: int | None = typer.Option(None, "--delay", "-d", min=1, help="Reveal delay in blocks"),
    request_context: str | None = typer.Option(None, "--context", help="Request context to correlate the reveal with"),
):
    """Encrypt and commit one verdict"""

    async def _run():
        controller = LifecycleController.from_config(config, encryptor=load_encryptor(encryptor))
        try:
            await controller.start()
            return await controller.committer.commit(verdict, delay=delay, request_context=request_context)
        finally:
            await controller.shutdown()

    try:
        config = _load_config(ctx)
        result = asyncio.run(_run())
    except VerdictServiceError as e:
        _fail(e)
    _emit(ctx, {**result.to_dict(), "revealHeight": result.record.reveal_height}, "Verdict Committed")


@app.command()
def identity(ctx: typer.Context):
    """Show the agent identity derived from the signing key"""
    try:
        config = _load_config(ctx)
        agent_identity = AgentIdentity.from_private_key(config.signing_key)
    except VerdictServiceError as e:
        _fail(e)
    if ctx.obj.get("output_format") == "json":
        _emit(ctx, {"agentIdentity": agent_identity.address}, "Agent Identity")
    else:
        rprint(f"[cyan]agent identity[/cyan] = [green]{agent_identity.address}[/green]")


@app.command("config")
def show_config(ctx: typer.Context):
    """Show the effective configuration with secrets masked"""
    try:
        config = _load_config(ctx)
    except VerdictServiceError as e:
        _fail(e)
    _emit(ctx, config.to_dict(), "Verdict Service Configuration")


@app.callback()
def callback(
    ctx: typer.Context,
    config_file: str | None = typer.Option(None, "--config", "-c", help="Path to configuration file (json/yaml)"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    output_format: str = typer.Option("table", "--output", "-o", help="Output format (table, json)"),
):
    """
    Verdict Service CLI.

    Examples:
        verdict-service agent                                  # Run an answering agent
        verdict-service commit Verified -e pkg.mod:Encryptor   # Commit one verdict
        verdict-service -o json config                         # Show effective config
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["log_level"] = log_level
    ctx.obj["output_format"] = output_format


def main():
    app()


if __name__ == "__main__":
    main()
