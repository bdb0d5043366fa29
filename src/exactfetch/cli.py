"""
exactfetch CLI — command-line interface.

Usage:
    exactfetch auth-url
    exactfetch login "https://example.com/callback?code=..."
    exactfetch divisions
    exactfetch transactions --division 123 --filter "FinancialYear gt 2022"
"""

from __future__ import annotations

import concurrent.futures
import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from exactfetch import __version__
from exactfetch.errors import (
    ApiError,
    AuthError,
    DecodeError,
    ExactFetchError,
    TransportError,
)

app = typer.Typer(
    name="exactfetch",
    help="Retrieve Exact Online financial transactions",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_CONFIG_OPTION = typer.Option(
    "exactfetch.yaml",
    "--config",
    "-c",
    help="Path to config file",
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]exactfetch[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
) -> None:
    """exactfetch — pull transaction lines out of Exact Online."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _load_client(config: str):  # noqa: ANN202
    from exactfetch.client import ExactFetch

    config_path = config if Path(config).exists() else None
    return ExactFetch.from_config(config_path)


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn exactfetch errors into a message and exit code 1."""
    try:
        yield
    except AuthError as e:
        console.print(f"[red]Authentication required:[/red] {e}")
        console.print("Run [bold]exactfetch auth-url[/bold] and [bold]exactfetch login[/bold].")
        raise typer.Exit(1) from e
    except ApiError as e:
        console.print(f"[red]The API rejected the request:[/red] {e.message}")
        console.print("Check the division and filter expression.")
        raise typer.Exit(1) from e
    except TransportError as e:
        console.print(f"[red]Connection failed:[/red] {e}")
        console.print("Try again later.")
        raise typer.Exit(1) from e
    except DecodeError as e:
        console.print(f"[red]Unexpected response from the API:[/red] {e}")
        raise typer.Exit(1) from e
    except ExactFetchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command("auth-url")
def auth_url(config: str = _CONFIG_OPTION) -> None:
    """Print the URL to open in a browser to grant access."""
    client = _load_client(config)
    console.print("Open this link, log in, and copy the whole URL you are sent back to:\n")
    console.print(client.get_auth_url(), soft_wrap=True)


@app.command()
def login(
    code: str = typer.Argument(..., help="Authorization code or the full redirect URL"),
    config: str = _CONFIG_OPTION,
) -> None:
    """Exchange an authorization code for tokens."""
    client = _load_client(config)
    with _handle_errors():
        credential = client.authenticate_with_code_sync(code)

    console.print("[green]✓[/green] Authenticated")
    if credential.current_division is not None:
        console.print(f"Current division: [bold]{credential.current_division}[/bold]")


@app.command()
def logout(config: str = _CONFIG_OPTION) -> None:
    """Forget the stored tokens."""
    client = _load_client(config)
    client.logout()
    console.print("[green]✓[/green] Logged out")


@app.command()
def status(config: str = _CONFIG_OPTION) -> None:
    """Show authentication status."""
    client = _load_client(config)
    credential = client.tokens.credential

    table = Table(title="exactfetch status", show_lines=True)
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    table.add_row("API", client.config.api.base_url)
    table.add_row("Token file", str(client.tokens.store.path))
    table.add_row("Authenticated", "yes" if credential else "no")
    if credential:
        expires = datetime.fromtimestamp(credential.expires_at).isoformat(timespec="seconds")
        state = "expired, refreshes on next request" if credential.is_expired() else "valid"
        table.add_row("Access token", f"{state} (until {expires})")
        table.add_row("Current division", str(credential.current_division or "unknown"))

    console.print(table)


@app.command()
def divisions(config: str = _CONFIG_OPTION) -> None:
    """List the divisions (customers) you have access to."""
    client = _load_client(config)
    with _handle_errors(), console.status("[bold green]Fetching divisions...[/bold green]"):
        result = client.get_divisions_sync()

    _display_divisions(result.records)
    _save_records(result.records, Path(client.config.output_dir) / "divisions.json")


@app.command()
def transactions(
    division: str = typer.Option(None, "--division", "-d", help="Division code"),
    filter: str = typer.Option(
        None,
        "--filter",
        "-f",
        help="OData filter, e.g. 'FinancialYear gt 2022'",
    ),
    output: str = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file (default: <output_dir>/<division>-transactions.json)",
    ),
    config: str = _CONFIG_OPTION,
) -> None:
    """Retrieve all transaction lines of a division. Ctrl-C cancels."""
    client = _load_client(config)

    console.print(Panel.fit(
        "[bold blue]exactfetch[/bold blue] — Transaction Lines",
        subtitle=f"v{__version__}",
    ))

    with _handle_errors():
        with console.status("[bold green]Fetching divisions...[/bold green]"):
            known = client.get_divisions_sync()

        codes = {str(d.get("Code")) for d in known.records}
        division = division or client.config.retrieval.default_division
        if not division:
            _display_divisions(known.records)
            division = typer.prompt("Division code")
        if str(division) not in codes:
            console.print(f"[red]Division {division} not found.[/red]")
            raise typer.Exit(1)

        result = _run_cancellable(client, division, filter)

    if result.cancelled:
        console.print(
            f"[yellow]Cancelled[/yellow] after {result.pages} pages; "
            f"keeping {len(result)} transactions."
        )
    else:
        console.print(f"[green]✓[/green] Retrieved {len(result)} transactions")

    path = Path(output) if output else (
        Path(client.config.output_dir) / f"{division}-transactions.json"
    )
    _save_records(result.records, path)


def _run_cancellable(client, division: str, filter: str | None):  # noqa: ANN001, ANN202
    """Run the retrieval on a worker thread; Ctrl-C requests cancellation."""
    with console.status("[bold green]Fetching transactions...[/bold green]") as spinner, \
            concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:

        def on_progress(event) -> None:  # noqa: ANN001
            spinner.update(f"[bold green]{event.message}...[/bold green]")

        future = pool.submit(client.get_transactions_sync, division, filter, on_progress)
        try:
            while True:
                try:
                    return future.result(timeout=0.2)
                except concurrent.futures.TimeoutError:
                    continue
        except KeyboardInterrupt:
            spinner.update("[bold yellow]Cancelling...[/bold yellow]")
            # The worker may not have started its retrieval yet.
            while not future.done():
                client.cancel_operation()
                time.sleep(0.1)
            return future.result()


def _display_divisions(records: list[dict[str, Any]]) -> None:
    table = Table(title="Divisions (customers)")
    table.add_column("Code", justify="right", style="bold cyan")
    table.add_column("CustomerName")
    table.add_column("Description")

    for d in records:
        table.add_row(
            str(d.get("Code", "")),
            str(d.get("CustomerName") or ""),
            str(d.get("Description") or ""),
        )
    console.print(table)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _save_records(records: list[dict[str, Any]], path: Path) -> None:
    """Save records as pretty-printed JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records, indent=2, default=_json_default))
    console.print(f"[green]✓[/green] Saved to [bold]{path}[/bold]")


if __name__ == "__main__":
    app()
