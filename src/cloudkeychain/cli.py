"""cloudkeychain — command line access to a .cloudKeychain directory.

Commands
--------
  init      Create a new keychain
  add       Add a login item
  get       Show one item (details are decrypted on demand)
  list      List all items by their overview
  search    Find items by title
  passwd    Change the master password
  info      Show keychain metadata

Configuration
-------------
  CLOUDKEYCHAIN_PATH      Keychain directory (default: per-user data dir)
  CLOUDKEYCHAIN_PASSWORD  Master password for non-interactive use
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from . import __version__
from .exceptions import BadKeychainError
from .item import Item
from .keychain import DEFAULT_ITERATIONS, Keychain
from .models import ItemData
from .store import KeychainStore

# ---------------------------------------------------------------------------
# App & consoles
# ---------------------------------------------------------------------------

_THEME = Theme(
    {
        "success": "bold green",
        "warning": "bold yellow",
        "danger": "bold red",
        "muted": "dim",
        "label": "cyan",
        "highlight": "bold white",
    }
)

console = Console(theme=_THEME)
err = Console(stderr=True, theme=_THEME)

app = typer.Typer(
    name="cloudkeychain",
    help="[bold cyan]cloudkeychain[/bold cyan] — read and write cloud keychain vaults.",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
    rich_markup_mode="rich",
)

# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _get_keychain_path() -> Path:
    env = os.environ.get("CLOUDKEYCHAIN_PATH")
    if env:
        return Path(env)
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return base / "cloudkeychain" / "default.cloudkeychain"


def _store() -> KeychainStore:
    return KeychainStore(_get_keychain_path())


def _require_keychain() -> KeychainStore:
    store = _store()
    if not store.exists():
        err.print(
            "[danger]No keychain found.[/danger] Run [bold]cloudkeychain init[/bold] first.",
        )
        raise typer.Exit(1)
    return store


def _ask_password(prompt: str = "Master password") -> str:
    env = os.environ.get("CLOUDKEYCHAIN_PASSWORD")
    if env:
        return env
    return Prompt.ask(prompt, password=True, console=console)


def _unlock(store: KeychainStore) -> Keychain:
    """Load the keychain and unlock it with the master password."""
    try:
        keychain = store.load()
    except BadKeychainError as exc:
        err.print(f"[danger]{exc}[/danger]")
        raise typer.Exit(1) from exc

    if not keychain.unlock(_ask_password()):
        err.print("[danger]Unlock failed — wrong password or corrupted keychain.[/danger]")
        if keychain.password_hint:
            err.print(f"[muted]Hint: {keychain.password_hint}[/muted]")
        raise typer.Exit(1)
    return keychain


def _find_one(keychain: Keychain, query: str) -> Item:
    """Return the unique item matching *query* (uuid, exact title, then partial)."""
    item = keychain.get_item(query.upper())
    if item is not None:
        return item

    q = query.lower()
    exact = [i for i in keychain.items.values() if not i.trashed and (i.title or "").lower() == q]
    if len(exact) == 1:
        return exact[0]

    partial = exact or keychain.find_items(query, include_shared=False)
    if len(partial) == 1:
        return partial[0]
    if len(partial) > 1:
        err.print(f"[warning]Multiple matches for '{query}':[/warning]")
        for i in partial:
            err.print(f"  • {i.title} ({i.uuid[:8]})")
        raise typer.Exit(1)

    err.print(f"[danger]No item found matching '[bold]{query}[/bold]'.[/danger]")
    raise typer.Exit(1)


def _timestamp(value: int) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _render_item(item: Item, *, show_password: bool = False) -> None:
    body = Text()

    def row(label: str, value: str, style: str = "highlight") -> None:
        body.append(f"  {label:<12}", style="label")
        body.append(value + "\n", style=style)

    username = item.field("username")
    password = item.field("password")
    url = (item.overview or {}).get("url")
    notes = (item.details or {}).get("notesPlain")

    if username:
        row("Username", username)
    if password:
        row("Password", password if show_password else "••••••••••••", style="bold green" if show_password else "muted")
    if url:
        row("URL", url, style="blue underline")
    if notes:
        row("Notes", notes, style="italic")
    row("Category", item.category_name or item.category, style="muted")
    row("Created", _timestamp(item.created), style="muted")
    row("Updated", _timestamp(item.updated), style="muted")
    row("UUID", item.uuid, style="muted")

    console.print(
        Panel(body, title=f"[bold cyan]{item.title or item.uuid}[/bold cyan]", expand=False, border_style="cyan")
    )


def _render_table(items: list[Item], title: str = "Items") -> None:
    table = Table(
        title=title,
        box=box.ROUNDED,
        header_style="bold cyan",
        show_lines=False,
        highlight=True,
        title_style="bold",
    )
    table.add_column("#", style="muted", justify="right", no_wrap=True)
    table.add_column("Title", style="bold white", min_width=16)
    table.add_column("Account", style="dim", min_width=14)
    table.add_column("URL", style="blue", max_width=35)
    table.add_column("Category", style="yellow")
    table.add_column("Updated", style="muted", no_wrap=True)

    for n, i in enumerate(sorted(items, key=lambda x: (x.title or "").lower()), 1):
        overview = i.overview or {}
        table.add_row(
            str(n),
            i.title or "",
            overview.get("ainfo") or "",
            overview.get("url") or "",
            i.category_name or i.category,
            datetime.fromtimestamp(i.updated, tz=timezone.utc).strftime("%Y-%m-%d"),
        )
    console.print(table)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cloudkeychain {__version__}")
        raise typer.Exit(0)


@app.callback()
def main_options(
    verbose: Annotated[bool, typer.Option("--verbose", help="Log keychain activity to stderr.")] = False,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
    ] = None,
) -> None:
    """Read and write cloud keychain vaults."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err, show_path=False)],
        )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    keychain_path: Annotated[
        Optional[Path],
        typer.Option("--path", "-p", help="Custom keychain directory.", show_default=False),
    ] = None,
    iterations: Annotated[int, typer.Option("--iterations", "-i", help="PBKDF2 iterations.")] = DEFAULT_ITERATIONS,
    hint: Annotated[str, typer.Option("--hint", help="Password hint stored in clear text.")] = "",
) -> None:
    """Create a new keychain."""
    if keychain_path:
        os.environ["CLOUDKEYCHAIN_PATH"] = str(keychain_path)

    store = _store()

    if store.exists():
        overwrite = Confirm.ask(
            "[warning]A keychain already exists at this path. Overwrite?[/warning]",
            default=False,
            console=console,
        )
        if not overwrite:
            raise typer.Exit(0)

    console.print(
        Panel(
            "[bold]Welcome to cloudkeychain[/bold]\n"
            "[muted]Choose a strong master password — it cannot be recovered if lost.[/muted]",
            title="[bold cyan]Keychain Initialisation[/bold cyan]",
            border_style="cyan",
            expand=False,
        )
    )

    pw = _ask_password("  Master password")
    if not pw:
        err.print("[danger]Master password cannot be empty.[/danger]")
        raise typer.Exit(1)
    if not os.environ.get("CLOUDKEYCHAIN_PASSWORD"):
        confirm = Prompt.ask("  Confirm password", password=True, console=console)
        if pw != confirm:
            err.print("[danger]Passwords do not match.[/danger]")
            raise typer.Exit(1)

    store.init(pw, iterations=iterations, password_hint=hint)
    console.print(f"\n[success]Keychain created →[/success] [bold]{store.path}[/bold]")


@app.command()
def add(
    title: Annotated[str, typer.Argument(help="Title of the login.")],
    username: Annotated[Optional[str], typer.Option("--username", "-u", help="Username or email.")] = None,
    password: Annotated[Optional[str], typer.Option("--password", help="Password (prompted if omitted).")] = None,
    url: Annotated[Optional[str], typer.Option("--url", help="Associated URL.")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", "-n", help="Free-form notes.")] = None,
) -> None:
    """Add a new login item."""
    store = _require_keychain()
    keychain = _unlock(store)

    if password is None:
        password = Prompt.ask("  Password [muted](blank to skip)[/muted]", password=True, default="", console=console) or None

    keychain.create_item(ItemData(title=title, username=username, password=password, url=url, notes=notes))
    store.save(keychain)

    console.print(f"\n[success]Item '[bold]{title}[/bold]' saved.[/success]")


@app.command()
def get(
    query: Annotated[str, typer.Argument(help="Item title (exact or partial) or uuid.")],
    show: Annotated[bool, typer.Option("--show", "-s", help="Display password in plain text.")] = False,
) -> None:
    """Decrypt an item and display its details."""
    store = _require_keychain()
    keychain = _unlock(store)
    item = _find_one(keychain, query)

    if not item.unlock("details"):
        err.print("[danger]Could not decrypt item details.[/danger]")
        raise typer.Exit(1)
    _render_item(item, show_password=show)
    keychain.lock()


@app.command("list")
def list_items() -> None:
    """List all items (overview data only)."""
    store = _require_keychain()
    keychain = _unlock(store)

    items = [i for i in keychain.items.values() if not i.trashed]
    if not items:
        console.print("[muted]The keychain is empty.[/muted]")
        return

    _render_table(items, title=f"Items ({len(items)} total)")


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search term matched against item titles.")],
) -> None:
    """Search items by title."""
    store = _require_keychain()
    keychain = _unlock(store)

    results = keychain.find_items(query)
    if not results:
        console.print(f"[muted]No results for '[bold]{query}[/bold]'.[/muted]")
        return

    _render_table(results, title=f"Search: {query}  ({len(results)} match{'es' if len(results) != 1 else ''})")


@app.command()
def passwd() -> None:
    """Change the master password."""
    store = _require_keychain()
    try:
        keychain = store.load()
    except BadKeychainError as exc:
        err.print(f"[danger]{exc}[/danger]")
        raise typer.Exit(1) from exc

    current = Prompt.ask("  Current password", password=True, console=console)
    new = Prompt.ask("  New password", password=True, console=console)
    if not new:
        err.print("[danger]Master password cannot be empty.[/danger]")
        raise typer.Exit(1)
    if new != Prompt.ask("  Confirm new password", password=True, console=console):
        err.print("[danger]Passwords do not match.[/danger]")
        raise typer.Exit(1)

    if not keychain.change_password(current, new):
        err.print("[danger]Current password is wrong.[/danger]")
        raise typer.Exit(1)

    store.save(keychain)
    console.print("[success]Master password changed.[/success]")


@app.command()
def info() -> None:
    """Show keychain metadata and location."""
    store = _store()

    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Version", __version__)
    table.add_row("Keychain path", str(store.path))
    table.add_row("Keychain exists", "[green]yes[/green]" if store.exists() else "[red]no[/red]")

    if store.exists():
        try:
            keychain = store.load()
        except BadKeychainError as exc:
            err.print(f"[danger]{exc}[/danger]")
            raise typer.Exit(1) from exc
        table.add_row("UUID", keychain.uuid)
        table.add_row("Profile", keychain.profile_name)
        table.add_row("Iterations", str(keychain.iterations))
        table.add_row("Created", _timestamp(keychain.created_at))
        table.add_row("Updated", _timestamp(keychain.updated_at))
        table.add_row("Items", str(len(keychain.items)))

    console.print(Panel(table, title="[bold cyan]cloudkeychain info[/bold cyan]", border_style="cyan", expand=False))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    app()


if __name__ == "__main__":
    main()
