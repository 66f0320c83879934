"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), opens an ApiClient
for the duration of each command and renders the resulting CallOutcome
through the UserInterface. Every handler returns the process exit code.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from portalcli.core.services.api_client import ApiClient
from portalcli.domain.exceptions import AuthenticationError, ConfigurationError
from portalcli.domain.interfaces.user_interface import UserInterface
from portalcli.domain.models.call import NO_MOCK, CallOutcome, Failure, Page
from portalcli.domain.models.common import normalize_method
from portalcli.infrastructure.http.query_builder import PageOptions

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

ClientFactory = Callable[[], ApiClient]


class CommandHandler:
    """Handles incoming commands and delegates to the ApiClient."""

    def __init__(self, client_factory: ClientFactory, ui: UserInterface, trace: bool = False):
        """Initializes the CommandHandler.

        Args:
            client_factory: Builds a fresh ApiClient; called once per command.
            ui: Where results and errors are rendered.
            trace: Print the telemetry ring buffer after each remote call.
        """
        self.client_factory = client_factory
        self.ui = ui
        self.trace = trace

    def _open_client(self) -> Optional[ApiClient]:
        try:
            return self.client_factory()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            self.ui.display_error(f"Configuration error: {e}")
            return None

    # --- Session commands ---

    async def handle_login(self, identifier: str, secret: str) -> int:
        logger.info(f"Handling 'login' command for '{identifier}'")
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            try:
                principal = await client.login(identifier, secret)
            except AuthenticationError as e:
                self.ui.display_error(f"Login failed: {e}")
                return EXIT_FAILURE
            if client.auth.current_access_token() is None:
                self.ui.display_warning(
                    f"Development session for '{principal.name}': the service issued no credentials."
                )
            else:
                self.ui.display_info(f"Logged in as {principal.name} ({', '.join(principal.roles)}).")
        return EXIT_OK

    async def handle_logout(self) -> int:
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            await client.logout()
        self.ui.display_info("Logged out.")
        return EXIT_OK

    async def handle_whoami(self, remote: bool = False) -> int:
        """Shows the cached principal, or the service's profile when remote=True."""
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            if remote:
                outcome = await client.current_user()
                return self._render(client, outcome, title="Current user")
            principal = client.auth.current_principal()
        if principal is None:
            self.ui.display_error("Not logged in.")
            return EXIT_FAILURE
        display_principal = getattr(self.ui, "display_principal", None)
        if display_principal:
            display_principal(principal)
        else:
            self.ui.display_output(principal.to_dict(), title="Current user")
        return EXIT_OK

    async def handle_reset_password(self, identifier: str) -> int:
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            accepted = await client.auth.request_password_reset(identifier)
        if not accepted:
            self.ui.display_error("Password reset request was not accepted.")
            return EXIT_FAILURE
        self.ui.display_info(f"Password reset requested for '{identifier}'.")
        return EXIT_OK

    # --- Remote calls ---

    async def handle_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[str] = None,
        requires_auth: bool = True,
        mock: Optional[str] = None,
    ) -> int:
        """Handles the 'request' command: one call through the pipeline."""
        try:
            verb = normalize_method(method)
            body = self._parse_json(data, "--data")
            mock_value = self._parse_json(mock, "--mock") if mock is not None else NO_MOCK
        except ValueError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE

        logger.info(f"Handling 'request' command: {verb} {endpoint}")
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            outcome = await client.request(
                verb, endpoint, body=body, requires_auth=requires_auth, mock_value=mock_value
            )
            return self._render(client, outcome, title=f"{verb} {endpoint}")

    async def handle_list(
        self,
        endpoint: str,
        options: PageOptions,
        requires_auth: bool = True,
        mock: Optional[str] = None,
    ) -> int:
        """Handles the 'list' command: one page of a paginated listing."""
        try:
            mock_value = self._parse_json(mock, "--mock") if mock is not None else NO_MOCK
        except ValueError as e:
            self.ui.display_error(str(e))
            return EXIT_USAGE

        logger.info(f"Handling 'list' command for {endpoint}")
        client = self._open_client()
        if client is None:
            return EXIT_FAILURE
        async with client:
            outcome = await client.get_paginated(
                endpoint, options, mock_value=mock_value, requires_auth=requires_auth
            )
            return self._render(client, outcome, title=endpoint)

    # --- Rendering ---

    @staticmethod
    def _parse_json(raw: Optional[str], option: str) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"{option} is not valid JSON: {e}") from e

    def _render(self, client: ApiClient, outcome: CallOutcome, title: str) -> int:
        if self.trace:
            display_telemetry = getattr(self.ui, "display_telemetry", None)
            if display_telemetry:
                display_telemetry(client.telemetry.recent())

        if isinstance(outcome, Failure):
            status = f" (HTTP {outcome.status})" if outcome.status is not None else ""
            self.ui.display_error(f"{outcome.kind.value}{status}: {outcome.detail}")
            return EXIT_FAILURE

        payload = outcome.payload
        display_page = getattr(self.ui, "display_page", None)
        if isinstance(payload, Page) and display_page:
            display_page(payload, degraded=outcome.degraded)
        elif isinstance(payload, Page):
            self.ui.display_output(_page_dict(payload), title=title, degraded=outcome.degraded)
        else:
            self.ui.display_output(payload, title=title, degraded=outcome.degraded)
        return EXIT_OK


def _page_dict(page: Page) -> Dict[str, Any]:
    return {
        "items": page.items,
        "total_items": page.total_items,
        "total_pages": page.total_pages,
        "page": page.page,
        "page_size": page.page_size,
    }
