"""Main entry point for the portalcli application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from typing import Annotated, Any, Coroutine, Dict, List, Optional, Union

import typer

from portalcli.core.command_handler import CommandHandler
from portalcli.core.services.api_client import ApiClient
from portalcli.infrastructure.cli.display import ConsoleDisplay
from portalcli.infrastructure.config.settings import get_config, load_client_settings, load_configuration
from portalcli.infrastructure.http.query_builder import PageOptions
from portalcli.infrastructure.monitoring.logger_setup import setup_logging

logger = logging.getLogger(__name__)

SESSION_EXPIRED_MESSAGE = "Session expired, please log in again"

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. The ApiClient itself is built per
    command by the handler's client factory, inside the command's event loop.
    """
    load_configuration()
    log_level_name = str(get_config('logging.level', 'WARNING')).upper()
    log_level = getattr(logging, log_level_name, logging.WARNING)
    log_file = get_config('logging.file')
    log_format = get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    setup_logging(log_level=log_level, log_file=log_file, log_format=log_format)
    logger.info("Configuration and logging initialized.")

    ui = ConsoleDisplay()

    def on_session_expired() -> None:
        ui.display_warning(SESSION_EXPIRED_MESSAGE)

    def client_factory() -> ApiClient:
        return ApiClient.create(load_client_settings(), on_session_expired=on_session_expired)

    return {
        'ui': ui,
        'command_handler': CommandHandler(client_factory=client_factory, ui=ui),
    }


# Populated on first use so that importing this module has no side effects
_dependencies: Dict[str, Any] = {}


def get_dependencies() -> Dict[str, Any]:
    if not _dependencies:
        _dependencies.update(create_dependencies())
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="portalcli",
    help="portalcli: resilient command-line client for the admin portal API.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, int]) -> None:
    """Runs a handler coroutine and exits with its return code."""
    try:
        code = asyncio.run(coro)
    except KeyboardInterrupt:
        raise typer.Exit(130)
    if code:
        raise typer.Exit(code)


def _handler() -> CommandHandler:
    return get_dependencies()['command_handler']


def _parse_filters(values: Optional[List[str]]) -> Dict[str, Union[str, List[str]]]:
    """Parses repeated key=value options; a repeated key becomes a list."""
    filters: Dict[str, Union[str, List[str]]] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got '{item}'", param_hint="--filter")
        existing = filters.get(key)
        if existing is None:
            filters[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            filters[key] = [existing, value]
    return filters


# --- CLI Commands ---

NoAuthOption = Annotated[
    bool,
    typer.Option("--no-auth", help="Send the request without credentials.")
]

MockOption = Annotated[
    Optional[str],
    typer.Option("--mock", help="JSON value to use if the call fails and mock fallback is enabled.")
]

@app.command()
def login(
    username: Annotated[str, typer.Argument(help="Account username or email.")],
    password: Annotated[str, typer.Option(prompt=True, hide_input=True, help="Account password.")],
):
    """Log in and store the session credentials."""
    run_async(_handler().handle_login(username, password))

@app.command()
def logout():
    """Clear the stored session and notify the service."""
    run_async(_handler().handle_logout())

@app.command()
def whoami(
    remote: Annotated[bool, typer.Option("--remote", help="Fetch the profile from the service.")] = False,
):
    """Show the logged-in user."""
    run_async(_handler().handle_whoami(remote=remote))

@app.command(name="reset-password")
def reset_password(
    username: Annotated[str, typer.Argument(help="Account username or email.")],
):
    """Request a password reset email."""
    run_async(_handler().handle_reset_password(username))

@app.command()
def request(
    method: Annotated[str, typer.Argument(help="HTTP method (GET, POST, PUT, PATCH, DELETE).")],
    endpoint: Annotated[str, typer.Argument(help="Endpoint path, e.g. /api/users/42.")],
    data: Annotated[Optional[str], typer.Option("--data", "-d", help="JSON request body.")] = None,
    no_auth: NoAuthOption = False,
    mock: MockOption = None,
):
    """Send one request through the resilient pipeline."""
    run_async(_handler().handle_request(method, endpoint, data=data, requires_auth=not no_auth, mock=mock))

@app.command(name="list")
def list_command(
    endpoint: Annotated[str, typer.Argument(help="Collection endpoint, e.g. /api/users.")],
    page: Annotated[Optional[int], typer.Option(help="Page number.")] = None,
    size: Annotated[Optional[int], typer.Option(help="Page size.")] = None,
    sort: Annotated[Optional[List[str]], typer.Option(help="Sort key; repeat for several, prefix '-' for descending.")] = None,
    search: Annotated[Optional[str], typer.Option(help="Free-text search.")] = None,
    filters: Annotated[Optional[List[str]], typer.Option("--filter", "-f", help="Filter as key=value; repeatable.")] = None,
    no_auth: NoAuthOption = False,
    mock: MockOption = None,
):
    """Fetch one page of a paginated listing."""
    options = PageOptions(
        page=page,
        page_size=size,
        sort=sort or None,
        search=search,
        filter=_parse_filters(filters),
    )
    run_async(_handler().handle_list(endpoint, options, requires_auth=not no_auth, mock=mock))

@app.callback()
def main_callback(
    trace: Annotated[
        bool,
        typer.Option("--trace", help="Print recent request telemetry after each call.")
    ] = False,
):
    """Resilient client for the admin portal API."""
    _handler().trace = trace

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
