"""``interview`` command: open a web form, print the answers as JSON."""

from __future__ import annotations

import json
import signal
import sys
import threading
from importlib.metadata import PackageNotFoundError, version
from typing import Optional

import typer
from rich.console import Console

from interview_cli.api import DEFAULT_TIMEOUT, interview
from interview_cli.config import InterviewConfig, resolve_config
from interview_cli.errors import InterviewError
from interview_cli.loader import format_time_ago
from interview_cli.log import configure_logging
from interview_cli.models import InterviewResult, QueuedInfo, SessionState

EXIT_OK = 0
EXIT_NOT_COMPLETED = 1
EXIT_USAGE = 2

console = Console(stderr=True, highlight=False)
# Errors stay visible under --quiet
error_console = Console(stderr=True, highlight=False)

app = typer.Typer(
    name="interview",
    help="Open a web form to gather responses, output JSON to stdout.",
    add_completion=False,
)


def get_version() -> str:
    try:
        return version("interview-cli")
    except PackageNotFoundError:
        return "0.0.0"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(get_version())
        raise typer.Exit(EXIT_OK)


def _fail(message: str) -> None:
    error_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(EXIT_USAGE)


def _print_queued(info: QueuedInfo) -> None:
    existing = info.existing_session
    console.print("[yellow]Interview already active:[/yellow]")
    console.print(f"  Title: {existing.title}")
    console.print(f"  Project: {existing.cwd}")
    if existing.git_branch:
        console.print(f"  Branch: {existing.git_branch}")
    console.print(f"  Started: {format_time_ago(existing.started_at)}")
    console.print()
    console.print("New interview queued. Open when ready:")
    console.print(f"  [cyan]{info.url}[/cyan]", soft_wrap=True)


class ResultWriter:
    """Writes exactly one JSON result to stdout."""

    def __init__(self, pretty: bool) -> None:
        self.pretty = pretty
        self.written = False
        self._lock = threading.Lock()

    def write(self, result: InterviewResult) -> None:
        with self._lock:
            if self.written:
                return
            self.written = True
        output = result.to_dict()
        text = json.dumps(output, indent=2) if self.pretty else json.dumps(output)
        typer.echo(text)


@app.command()
def main(
    questions: Optional[str] = typer.Argument(
        None, help="Path to questions JSON or saved interview HTML"
    ),
    timeout: Optional[int] = typer.Option(
        None, "--timeout", "-t", help=f"Timeout in seconds (default: {DEFAULT_TIMEOUT})"
    ),
    theme: Optional[str] = typer.Option(None, "--theme", help="Theme: default, tufte"),
    mode: Optional[str] = typer.Option(None, "--mode", help="Theme mode: auto, light, dark"),
    port: Optional[int] = typer.Option(None, "--port", help="Fixed port number"),
    open_browser: bool = typer.Option(
        True, "--open/--no-open", help="Open the browser (--no-open prints the URL to stderr)"
    ),
    browser: Optional[str] = typer.Option(
        None, "--browser", help='Browser command (e.g. "firefox", "google-chrome")'
    ),
    snapshot_dir: Optional[str] = typer.Option(None, "--snapshot-dir", help="Snapshot directory"),
    save: bool = typer.Option(True, "--save/--no-save", help="Auto-save a snapshot on submit"),
    stdin: bool = typer.Option(False, "--stdin", help="Read questions JSON from stdin"),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty-print JSON output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress status messages on stderr"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging to stderr"),
    show_version: bool = typer.Option(
        False, "--version", "-V", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    """Open a web form to gather responses, output JSON to stdout.

    Environment: INTERVIEW_TIMEOUT, INTERVIEW_THEME, INTERVIEW_MODE,
    INTERVIEW_PORT, INTERVIEW_CONFIG (config file path).

    Exit codes: 0 completed, 1 cancelled/timeout/aborted, 2 usage or start-up error.
    """
    configure_logging(verbose, console)
    console.quiet = quiet

    if stdin and questions:
        _fail("Cannot use both --stdin and a file path argument")
    if not stdin and not questions:
        _fail("Missing questions file argument. Use --help for usage.")
    if timeout is not None and timeout <= 0:
        _fail("--timeout must be a positive number")
    if port is not None and not 1 <= port <= 65535:
        _fail("--port must be between 1 and 65535")
    if mode is not None and mode not in ("auto", "light", "dark"):
        _fail("--mode must be one of: auto, light, dark")

    config = resolve_config(
        InterviewConfig(
            timeout=timeout,
            theme=theme,
            mode=mode,  # type: ignore[arg-type]
            port=port,
            browser=browser,
            snapshot_dir=snapshot_dir,
            auto_save=False if not save else None,
        )
    )

    questions_data = None
    if stdin:
        try:
            questions_data = json.loads(sys.stdin.read())
        except json.JSONDecodeError:
            _fail("Invalid JSON from stdin")

    writer = ResultWriter(pretty)
    cancel_event = threading.Event()

    def handle_signal(signum, frame) -> None:
        cancel_event.set()

    previous = {
        sig: signal.signal(sig, handle_signal)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    def on_ready(url: str) -> None:
        if not open_browser:
            console.print(f"Interview URL: [cyan]{url}[/cyan]", soft_wrap=True)

    try:
        result = interview(
            questions=questions_data,
            questions_path=questions,
            timeout=config.timeout or DEFAULT_TIMEOUT,
            theme={
                "name": config.theme,
                "mode": config.mode,
                "light_path": config.light_path,
                "dark_path": config.dark_path,
                "toggle_hotkey": config.toggle_hotkey,
            },
            port=config.port,
            open_browser=open_browser,
            browser=config.browser,
            snapshot_dir=config.snapshot_dir,
            auto_save=config.auto_save if config.auto_save is not None else True,
            cancel_event=cancel_event,
            on_ready=on_ready,
            on_queued=_print_queued,
        )
    except (InterviewError, OSError) as e:
        error_console.print(f"[red]Error:[/red] {e}")
        writer.write(InterviewResult(status=SessionState.ABORTED))
        raise typer.Exit(EXIT_USAGE)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    writer.write(result)
    raise typer.Exit(EXIT_OK if result.status is SessionState.COMPLETED else EXIT_NOT_COMPLETED)


if __name__ == "__main__":
    app()
