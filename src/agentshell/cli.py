"""CLI entry point for agentshell."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.markup import escape

from agentshell.config import AgentShellConfig
from agentshell.errors import ShellError
from agentshell.session.wire import EventType, Wire
from agentshell.shell.session import CommandSession

app = typer.Typer(
    name="agentshell",
    help="A persistent shell session that an agent drives one command at a time.",
    no_args_is_help=True,
)

console = Console(highlight=False)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(config_file: str | None, timeout: float | None) -> AgentShellConfig:
    config = AgentShellConfig.load(config_file)
    if timeout:
        config.shell.timeout_seconds = timeout
    return config


@app.command()
def run(
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Seconds before a command is interrupted."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Interactive session. After an interruption, type 'wait', 'kill' or input."""
    setup_logging(verbose)
    config = _load_config(config_file, timeout)
    asyncio.run(_repl(config, show_events=verbose))


@app.command(name="exec")
def exec_(
    commands: list[str] = typer.Argument(help="Commands to run in order."),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Seconds before a command is interrupted."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run each command in the same shell and print its output."""
    setup_logging(verbose)
    config = _load_config(config_file, timeout)
    asyncio.run(_exec_all(config, commands))


async def _exec_all(config: AgentShellConfig, commands: list[str]) -> None:
    session = CommandSession(config)
    try:
        for command in commands:
            console.print(f"[bold]$ {escape(command)}[/bold]")
            output = await session.execute(command)
            if output:
                console.print(escape(output))
            if session.is_suspended():
                # Nobody to ask; stop the stuck command and move on
                console.print(escape(await session.continue_command("kill")))
    except ShellError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        await session.terminate()


async def _repl(config: AgentShellConfig, show_events: bool = False) -> None:
    wire = Wire()
    session = CommandSession(config, wire=wire)
    loop = asyncio.get_running_loop()

    async def _consume_wire() -> None:
        queue = wire.subscribe()
        while True:
            event = await queue.get()
            if event is None:
                break
            if event.type == EventType.ERROR:
                console.print(f"[red]{escape(event.data['error'])}[/red]")
            elif show_events:
                console.print(f"[dim]{event.type.value}: {escape(str(event.data))}[/dim]")

    consumer = asyncio.create_task(_consume_wire())
    try:
        while True:
            prompt = "(wait/kill/input) " if session.is_suspended() else "$ "
            try:
                line = await loop.run_in_executor(None, input, prompt)
            except EOFError:
                break

            try:
                if session.is_suspended():
                    output = await session.continue_command(line)
                elif line.strip() == "exit":
                    break
                elif not line.strip():
                    continue
                else:
                    output = await session.execute(line)
            except ShellError as e:
                console.print(f"[red]Error: {escape(str(e))}[/red]")
                continue

            if output:
                console.print(escape(output))
    finally:
        await session.terminate()
        wire.close()
        await consumer


def main() -> None:
    app()


if __name__ == "__main__":
    main()
