"""Command-line client for the command center."""

import asyncio
from typing import Any, Dict, Optional

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from commandcenter.config import CommandCenterConfig
from commandcenter.invocation import new_invocation_id
from commandcenter.messaging import MessageBusClient
from commandcenter.phrases import PhraseTable
from commandcenter.translator import Translator

console = Console()

TERMINAL_EVENTS = ("commandFinished", "commandStopped")


def default_server(config: CommandCenterConfig) -> str:
    host = "localhost" if config.host in ("0.0.0.0", "::") else config.host
    return f"http://{host}:{config.port}"


def format_event(name: str, data: Dict[str, Any]) -> Optional[str]:
    """Rich markup for one lifecycle event, or None for raw output."""
    if name == "commandIssued":
        return f"[bold cyan]$ {data.get('systemCommand', '')}[/bold cyan]"
    if name == "commandFinished":
        if data.get("error"):
            return f"[red]✗ Failed: {data['error']}[/red]"
        code = data.get("code")
        color = "green" if code in (0, None) else "yellow"
        return f"[{color}]✓ Finished (exit code {code})[/{color}]"
    if name == "commandStopped":
        return f"[yellow]⚠ {data.get('message', 'Command stopped')}[/yellow]"
    if name == "commandAnalysis":
        if data.get("error"):
            return f"[yellow]Analysis unavailable: {data['error']}[/yellow]"
        analysis = data.get("analysis") or {}
        lines = [f"[bold]Analysis:[/bold] {analysis.get('summary', '')}"]
        lines += [f"  [red]• {concern}[/red]" for concern in analysis.get("concerns", [])]
        lines += [f"  [yellow]• {warning}[/yellow]" for warning in analysis.get("warnings", [])]
        lines += [f"  → {recommendation}" for recommendation in analysis.get("recommendations", [])]
        return "\n".join(lines)
    return None


def print_event(name: str, data: Dict[str, Any], show_id: bool = False) -> None:
    prefix = f"[dim]{data.get('invocationId', '')[:8]}[/dim] " if show_id else ""
    if name == "commandOutput":
        style = "red" if data.get("type") == "stderr" else None
        console.print(data.get("data", ""), end="", style=style, markup=False, highlight=False)
        return
    text = format_event(name, data)
    if text is not None:
        console.print(prefix + text)


def print_translation(result: Dict[str, Any]) -> None:
    table = Table(show_header=True, box=None)
    table.add_column("Step", style="cyan")
    table.add_column("Command")
    for step in result.get("steps", []):
        table.add_row(step["label"], step["command"])
    console.print(table)
    console.print(
        f"[dim]source: {result.get('source')}, confidence: {result.get('confidence', 0):.2f}[/dim]"
    )
    for warning in result.get("warnings", []):
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    if result.get("explanation"):
        console.print(Panel(result["explanation"], title="Explanation"))


class CommandCenterClient:
    """Thin HTTP client for the command center service."""

    def __init__(self, server: str, timeout: float = 30.0):
        self.server = server.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        with httpx.Client(base_url=self.server, timeout=self.timeout) as client:
            return client.request(method, path, **kwargs)

    def execute(self, command: str, invocation_id: str) -> httpx.Response:
        return self._request("POST", "/execute", json={
            "command": command,
            "invocationId": invocation_id,
            "source": "cli",
        })

    def stop(self) -> httpx.Response:
        return self._request("POST", "/stop")

    def status(self) -> httpx.Response:
        return self._request("GET", "/status")

    def history(self) -> httpx.Response:
        return self._request("GET", "/history")

    def translate(self, command: str) -> httpx.Response:
        return self._request("POST", "/translate", json={"command": command})


def _fail(response: httpx.Response) -> None:
    try:
        message = response.json().get("error", response.text)
    except ValueError:
        message = response.text
    console.print(f"[red]Error ({response.status_code}): {message}[/red]")
    raise SystemExit(1)


async def _follow(config: CommandCenterConfig, client: CommandCenterClient, text: str, analysis_wait: float):
    bus = MessageBusClient(config)
    try:
        await bus.connect()
    except Exception:
        console.print("[yellow]Message bus unavailable; not following output[/yellow]")
        return client.execute(text, new_invocation_id()), None

    invocation_id = new_invocation_id()
    terminal = asyncio.Event()
    analyzed = asyncio.Event()
    outcome: Dict[str, Any] = {}

    async def on_event(subject: str, data: Dict[str, Any]) -> None:
        if data.get("invocationId") != invocation_id:
            return
        name = subject.rsplit(".", 1)[-1]
        print_event(name, data)
        if name in TERMINAL_EVENTS:
            outcome["event"] = name
            outcome["error"] = data.get("error")
            terminal.set()
        elif name == "commandAnalysis":
            analyzed.set()

    try:
        await bus.subscribe(f"{config.events_subject_prefix}.>", on_event)
        response = await asyncio.to_thread(client.execute, text, invocation_id)
        if response.status_code != 202:
            return response, None
        console.print(f"[dim]Invocation {invocation_id}[/dim]")
        await terminal.wait()
        if outcome["event"] == "commandFinished" and analysis_wait > 0:
            try:
                await asyncio.wait_for(analyzed.wait(), timeout=analysis_wait)
            except asyncio.TimeoutError:
                console.print("[dim]No analysis received[/dim]")
        return response, outcome
    finally:
        await bus.disconnect()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--server", envvar="COMMANDCENTER_URL", default=None, help="Command center base URL")
@click.pass_context
def cli(ctx, server):
    """Command Center - run natural language commands on the remote host."""
    config = CommandCenterConfig()
    ctx.obj = {
        "config": config,
        "client": CommandCenterClient(server or default_server(config)),
    }


@cli.command()
@click.argument("text", nargs=-1, required=True)
@click.option("--follow/--no-follow", default=True, help="Stream output via the message bus")
@click.option("--analysis-wait", default=30.0, help="Seconds to wait for the analysis after finishing")
@click.pass_context
def run(ctx, text, follow, analysis_wait):
    """Translate and execute a command."""
    config, client = ctx.obj["config"], ctx.obj["client"]
    command = " ".join(text)

    try:
        if follow:
            response, outcome = asyncio.run(_follow(config, client, command, analysis_wait))
        else:
            response, outcome = client.execute(command, new_invocation_id()), None
    except httpx.HTTPError as e:
        console.print(f"[red]Cannot reach command center: {e}[/red]")
        raise SystemExit(1)

    if response.status_code != 202:
        _fail(response)
    if outcome is None:
        body = response.json()
        console.print(f"[green]Started[/green] [cyan]{body.get('systemCommand', '')}[/cyan]")
        console.print(f"[dim]Invocation {body.get('invocationId')}[/dim]")
    elif outcome.get("error") or outcome.get("event") == "commandStopped":
        raise SystemExit(1)


@cli.command()
@click.pass_context
def stop(ctx):
    """Interrupt the running command."""
    response = ctx.obj["client"].stop()
    if response.status_code != 200:
        _fail(response)
    console.print(f"[yellow]{response.json()['status']}[/yellow]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show remote host status."""
    response = ctx.obj["client"].status()
    if response.status_code != 200:
        _fail(response)
    data = response.json()
    state = "[yellow]busy[/yellow]" if data.get("busy") else "[green]idle[/green]"
    console.print(f"[bold]Command center:[/bold] {state}  [dim]{data.get('timestamp', '')}[/dim]\n")
    for command, output in data.get("system", {}).items():
        if isinstance(output, dict):
            body = f"[red]{output.get('error')}[/red]"
        else:
            body = output or "[dim](no output)[/dim]"
        console.print(Panel(body, title=command, title_align="left"))


@cli.command()
@click.pass_context
def history(ctx):
    """Show recent invocations."""
    response = ctx.obj["client"].history()
    if response.status_code != 200:
        _fail(response)
    table = Table(title="Recent commands")
    table.add_column("Invocation", style="dim")
    table.add_column("Input")
    table.add_column("Command", style="cyan")
    table.add_column("State")
    table.add_column("Exit")
    for entry in response.json().get("history", []):
        table.add_row(
            entry["invocationId"][:8],
            entry["input"],
            entry["systemCommand"],
            entry["state"],
            "" if entry["exitCode"] is None else str(entry["exitCode"]),
        )
    console.print(table)


@cli.command()
@click.argument("text", nargs=-1, required=True)
@click.option("--local", is_flag=True, help="Use the built-in phrase table instead of the server")
@click.pass_context
def translate(ctx, text, local):
    """Show what a request would run, without executing it."""
    command = " ".join(text)
    if local:
        result = asyncio.run(Translator().translate(command))
        print_translation(result.model_dump(mode="json"))
        return
    response = ctx.obj["client"].translate(command)
    if response.status_code != 200:
        _fail(response)
    print_translation(response.json())


@cli.command()
def phrases():
    """List the phrases the translator knows."""
    for category, names in PhraseTable().categories().items():
        console.print(f"[bold]{category}[/bold]: {', '.join(names)}", soft_wrap=True)


@cli.command()
@click.option("--invocation", "invocation_id", default=None, help="Only show one invocation")
@click.pass_context
def watch(ctx, invocation_id):
    """Stream lifecycle events from the message bus."""
    config = ctx.obj["config"]

    async def run_watch():
        bus = MessageBusClient(config)
        try:
            await bus.connect()
        except Exception as e:
            console.print(f"[red]Failed to connect to message bus: {e}[/red]")
            raise SystemExit(1)

        async def on_event(subject: str, data: Dict[str, Any]) -> None:
            if invocation_id and data.get("invocationId") != invocation_id:
                return
            print_event(subject.rsplit(".", 1)[-1], data, show_id=invocation_id is None)

        try:
            await bus.subscribe(f"{config.events_subject_prefix}.>", on_event)
            console.print(f"[dim]Watching {config.events_subject_prefix}.> (Ctrl+C to exit)[/dim]")
            await asyncio.Event().wait()
        finally:
            await bus.disconnect()

    try:
        asyncio.run(run_watch())
    except KeyboardInterrupt:
        pass


@cli.command()
@click.pass_context
def serve(ctx):
    """Run the command center service."""
    from services.commander.service import run as run_service

    run_service(ctx.obj["config"])


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
