"""Command line tools: get, set, merge, rules, monitor, token, push-id."""

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Annotated, Optional

import typer

from fireclient.config import settings
from fireclient.database import DatabaseRef
from fireclient.errors import FirebaseError
from fireclient.events import EventType
from fireclient.logging_config import setup_logging
from fireclient.pushid import generate_push_id
from fireclient.query import shallow as shallow_param
from fireclient.tokgen import TokenGenerator

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Firebase Realtime Database command line tools.",
    no_args_is_help=True,
)

# Deny-all rules written by `rules --clear`
EMPTY_RULES = """{
  "rules": {
    ".read": "false",
    ".write": "false"
  }
}"""

CredsOption = Annotated[
    str,
    typer.Option("--creds", help="Path to google service account credentials"),
]
RefOption = Annotated[str, typer.Option("--ref", help="Database path ref")]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log HTTP requests and responses"),
]


def _fail(message: str) -> typer.Exit:
    typer.echo(f"error: {message}", err=True)
    return typer.Exit(1)


def _open_root(creds: str, verbose: bool) -> DatabaseRef:
    setup_logging("DEBUG" if verbose else None)
    creds = creds or settings.FIREBASE_CREDENTIALS
    if not creds:
        raise _fail("invalid credentials file")
    try:
        return DatabaseRef.from_service_account_file(
            creds, url=settings.FIREBASE_URL or None, log_http=verbose
        )
    except FirebaseError as e:
        raise _fail(str(e)) from e


def _read_json_file(path: Path):
    try:
        return json.loads(path.read_bytes())
    except (OSError, ValueError) as e:
        raise _fail(str(e)) from e


def _pretty(value) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except FirebaseError as e:
        raise _fail(str(e)) from e


@app.command()
def get(
    creds: CredsOption = "",
    ref: RefOption = "/",
    shallow: Annotated[bool, typer.Option(help="Only return keys")] = False,
    verbose: VerboseOption = False,
) -> None:
    """Retrieve and pretty print the value stored at a ref."""
    root = _open_root(creds, verbose)

    async def _get():
        async with root:
            params = [shallow_param()] if shallow else []
            value = await root.child(ref).get(*params)
        typer.echo(_pretty(value))

    _run(_get())


@app.command("set")
def set_value(
    file: Annotated[Path, typer.Option("--file", help="JSON encoded file")],
    creds: CredsOption = "",
    ref: RefOption = "/",
    verbose: VerboseOption = False,
) -> None:
    """Overwrite the value at a ref with the contents of a JSON file."""
    root = _open_root(creds, verbose)
    value = _read_json_file(file)

    async def _set():
        async with root:
            await root.child(ref).set(value)

    _run(_set())


@app.command()
def merge(
    file: Annotated[Path, typer.Option("--file", help="JSON encoded object file")],
    creds: CredsOption = "",
    ref: RefOption = "/",
    verbose: VerboseOption = False,
) -> None:
    """Write each top-level key of a JSON object file as a child of a ref."""
    root = _open_root(creds, verbose)
    data = _read_json_file(file)
    if not isinstance(data, dict):
        raise _fail("merge file must contain a JSON object")

    async def _merge():
        async with root:
            base = root.child(ref)
            for key, value in data.items():
                logger.info("writing %s", key)
                await base.child(key).set(value)

    _run(_merge())


@app.command()
def rules(
    file: Annotated[Path, typer.Option("--file", help="Path to rules file")] = Path("rules.json"),
    clear: Annotated[bool, typer.Option(help="Replace rules with deny-all rules")] = False,
    show: Annotated[bool, typer.Option(help="Print the current rules instead")] = False,
    creds: CredsOption = "",
    verbose: VerboseOption = False,
) -> None:
    """Set (or show) the database security rules."""
    root = _open_root(creds, verbose)

    buf = b""
    if not show:
        if clear:
            buf = EMPTY_RULES.encode()
        else:
            try:
                buf = file.read_bytes()
            except OSError as e:
                raise _fail(str(e)) from e

    async def _rules():
        async with root:
            if show:
                typer.echo((await root.get_rules_json()).decode("utf-8"))
            else:
                await root.set_rules_json(buf)

    _run(_rules())


@app.command()
def monitor(
    creds: CredsOption = "",
    ref: RefOption = "/",
    listen: Annotated[
        bool, typer.Option("--listen", help="Reconnect whenever the stream ends")
    ] = False,
    event_type: Annotated[
        Optional[list[str]],
        typer.Option("--type", help="Event types to show with --listen (default: put, patch)"),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Print change events for a ref as they arrive."""
    root = _open_root(creds, verbose)
    wanted = event_type or [EventType.PUT.value, EventType.PATCH.value]

    async def _monitor():
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, stop.set)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported; stop with KeyboardInterrupt")

        async with root:
            target = root.child(ref)
            if listen:
                events = target.listen(stop, wanted)
            else:
                events = await target.watch(stop)

            async for ev in events:
                try:
                    body = _pretty(ev.json())
                except ValueError:
                    body = ev.data.decode("utf-8", errors="replace")
                typer.echo(f"{str(ev.type).upper()}: {body}")

    _run(_monitor())


@app.command()
def token(
    uid: Annotated[str, typer.Option("--uid", help="Authenticated user id")] = "",
    claims: Annotated[
        str, typer.Option("--claims", help="JSON encoded additional auth claims")
    ] = "",
    creds: CredsOption = "",
) -> None:
    """Generate a custom auth token for a user id."""
    setup_logging()
    creds = creds or settings.FIREBASE_CREDENTIALS
    if not creds:
        raise _fail("invalid credentials file")

    extra = None
    if claims:
        try:
            extra = json.loads(claims)
        except ValueError as e:
            raise _fail(f"invalid claims: {e}") from e

    try:
        gen = TokenGenerator.from_file(creds)
        typer.echo(gen.token(uid=uid or None, claims=extra))
    except FirebaseError as e:
        raise _fail(str(e)) from e


@app.command("push-id")
def push_id(
    count: Annotated[int, typer.Option("--count", "-n", min=1, help="How many IDs")] = 1,
) -> None:
    """Print newly generated push IDs."""
    for _ in range(count):
        typer.echo(generate_push_id())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
