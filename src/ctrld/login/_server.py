"""
Local-loopback credential setup server.

Serves a small web form on `127.0.0.1:<ephemeral port>` where the user
pastes a Control D API token. The token is checked against the API, saved in
the credential store, and the account name is handed back to the caller of
SetupServer.start().

Lifecycle:

    IDLE -> LISTENING -> AWAITING_SUBMISSION -> COMPLETING -> DONE
                                                           -> CANCELLED
                                                           -> FAILED

Endpoints:
    GET  /          setup form (embeds the CSRF token)
    POST /validate  syntax + connectivity check, never persists
    POST /submit    syntax + connectivity check, then store.set()
    GET  /success   success page (calls /complete)
    POST /complete  delivers the pending result and shuts down

Example:
    >>> from ctrld import InMemoryCredentialStore
    >>> from ctrld.login import SetupServer
    >>> server = SetupServer(store=InMemoryCredentialStore())
    >>> result = server.start(cancel=CancellationToken.with_timeout(600))
    >>> print(result.account_name)
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import threading
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol
from urllib.parse import urlparse

from ctrld._cancel import CancellationToken, OperationCancelledError
from ctrld._client import ControlDClient
from ctrld._config import CTRLD, SetupConfig
from ctrld._errors import ApiError, TransportError
from ctrld._secrets import CredentialStore
from ctrld.login._csrf import CSRF_HEADER, CSRFGuard
from ctrld.login._handoff import OneShot
from ctrld.login._limiter import ClientRateLimiter, TooManyAttemptsError
from ctrld.login._templates import CONTENT_SECURITY_POLICY, render_setup_page, render_success_page
from ctrld.login._validation import ValidationError, validate_account_name, validate_api_token

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
SOCKET_TIMEOUT = 30.0

INVALID_REQUEST_BODY = "Invalid request body"
CONNECTION_SUCCESSFUL = "Connection successful!"


class SetupState(StrEnum):
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_SUBMISSION = "awaiting_submission"
    COMPLETING = "completing"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


_STATE_ORDER = {
    SetupState.IDLE: 0,
    SetupState.LISTENING: 1,
    SetupState.AWAITING_SUBMISSION: 2,
    SetupState.COMPLETING: 3,
    SetupState.DONE: 4,
    SetupState.CANCELLED: 4,
    SetupState.FAILED: 4,
}


@dataclass(frozen=True)
class SetupResult:
    """
    Outcome of a completed setup.

    Attributes:
        account_name: The account name the token was saved under, as submitted.
    """

    account_name: str


class SetupCancelledError(Exception):
    """Raised by start() when the server shut down without a saved account."""

    def __init__(self, message: str = "setup cancelled"):
        super().__init__(message)


class ConnectivityError(Exception):
    """Raised when a submitted token cannot list profiles."""


class ProfileLister(Protocol):
    def list_profiles(self, cancel: CancellationToken | None = None) -> list[dict[str, Any]]: ...

    def close(self) -> None: ...


ClientFactory = Callable[[str], ProfileLister]


def _default_client_factory(token: str) -> ProfileLister:
    return ControlDClient(token=token)


def open_browser(url: str) -> bool:
    """Open `url` in the default browser. Returns False if no launcher worked."""
    try:
        if webbrowser.open(url, new=2):
            return True
    except webbrowser.Error as e:
        logger.debug(f"webbrowser.open failed for {url} ({e})")

    if sys.platform == "darwin":
        command = ["open", url]
    elif sys.platform.startswith("linux"):
        command = ["xdg-open", url]
    elif os.name == "nt":
        command = ["rundll32", "url.dll,FileProtocolHandler", url]
    else:
        return False

    try:
        subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        return True
    except OSError as e:
        logger.debug(f"{command[0]} failed for {url} ({e})")
        return False


# =============================================================================
# Server
# =============================================================================


class SetupServer:
    """
    Browser-based credential setup.

    Args:
        store: Where the submitted token is saved.
        client_factory: Builds the API client used for connectivity checks
            from a token. Defaults to ControlDClient.
        config: Setup settings. Defaults to CTRLD.config.setup.
        open_browser: Open the form in the default browser on start.
            Defaults to `config.open_browser`.
    """

    def __init__(
        self,
        store: CredentialStore,
        client_factory: ClientFactory | None = None,
        config: SetupConfig | None = None,
        open_browser: bool | None = None,
    ):
        assert store is not None, "store cannot be None."

        self.config = config or CTRLD.config.setup
        self.store = store
        self.client_factory = client_factory or _default_client_factory
        self.open_browser = self.config.open_browser if open_browser is None else open_browser

        self.csrf = CSRFGuard()
        self.limiter = ClientRateLimiter(
            max_attempts=self.config.max_attempts,
            window=self.config.window,
        )

        self._wakeup = threading.Event()
        self._result: OneShot[SetupResult] = OneShot(on_offer=self._wakeup)
        self._pending: SetupResult | None = None
        self._pending_lock = threading.Lock()

        self._state = SetupState.IDLE
        self._state_lock = threading.Lock()
        self._started = False

        self._session = CancellationToken()
        self._httpd: ThreadingHTTPServer | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SetupState:
        with self._state_lock:
            return self._state

    def _advance(self, state: SetupState) -> None:
        """Move to `state` if it is ahead of the current one. Terminal states stick."""
        with self._state_lock:
            if _STATE_ORDER[state] > _STATE_ORDER[self._state]:
                logger.debug(f"Setup state: {self._state} -> {state}")
                self._state = state

    @property
    def pending_result(self) -> SetupResult | None:
        with self._pending_lock:
            return self._pending

    @property
    def url(self) -> str:
        assert self._httpd is not None, "server is not listening."
        host, port = self._httpd.server_address[:2]
        return f"http://{host}:{port}"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, cancel: CancellationToken | None = None) -> SetupResult:
        """
        Serve the setup form and block until the flow ends.

        Returns:
            The saved account once the browser called /complete.

        Raises:
            OperationCancelledError: If `cancel` was cancelled.
            DeadlineExceededError: If `cancel`'s deadline passed.
            SetupCancelledError: If the server shut down without a saved account.
            OSError: If the loopback port cannot be bound.
        """
        with self._state_lock:
            if self._started:
                raise RuntimeError("setup server can only be started once")
            self._started = True

        cancel = cancel or CancellationToken()
        self._session = cancel

        try:
            self._httpd = _LoopbackHTTPServer((LOOPBACK_HOST, 0), _SetupRequestHandler, self)
        except OSError:
            self._advance(SetupState.FAILED)
            raise

        serve_thread = threading.Thread(
            target=self._httpd.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="ctrld-setup-server",
            daemon=True,
        )
        serve_thread.start()
        self.limiter.start_sweeper(self.config.sweep_interval)
        self._advance(SetupState.LISTENING)

        url = self.url
        logger.info(f"Setup server listening on {url}")
        print(f"Open {url} in your browser to connect your Control D account.", file=sys.stderr)
        if self.open_browser:
            threading.Thread(target=self._launch_browser, args=(url,), daemon=True).start()

        try:
            cancel.wait(self._wakeup)
            return self._finish()
        except OperationCancelledError:
            self._advance(SetupState.CANCELLED)
            logger.info("Setup cancelled by caller")
            raise
        except SetupCancelledError:
            raise
        except Exception:
            self._advance(SetupState.FAILED)
            raise
        finally:
            self._httpd.shutdown()
            self._httpd.server_close()
            serve_thread.join()
            self.limiter.stop()
            logger.debug("Setup server stopped")

    def _finish(self) -> SetupResult:
        result = self._result.value or self.pending_result
        if result is None:
            self._advance(SetupState.CANCELLED)
            raise SetupCancelledError()
        self._advance(SetupState.DONE)
        logger.info(f"Setup completed for account '{result.account_name}'")
        return result

    def shutdown(self) -> None:
        """Stop waiting. start() returns the pending result or raises SetupCancelledError."""
        self._wakeup.set()

    @staticmethod
    def _launch_browser(url: str) -> None:
        if not open_browser(url):
            logger.info(f"Failed to open browser, navigate manually to {url}")

    # -------------------------------------------------------------------------
    # Endpoint logic (called from request handler threads)
    # -------------------------------------------------------------------------

    def setup_page(self) -> bytes:
        self._advance(SetupState.AWAITING_SUBMISSION)
        return render_setup_page(self.csrf.token)

    def success_page(self) -> bytes:
        pending = self.pending_result
        return render_success_page(self.csrf.token, pending.account_name if pending else None)

    def validate(self, account_name: str, api_token: str) -> dict[str, Any]:
        """Check syntax and connectivity without persisting anything."""
        try:
            self._check(account_name, api_token)
        except (ValidationError, ConnectivityError) as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "message": CONNECTION_SUCCESSFUL}

    def submit(self, account_name: str, api_token: str) -> dict[str, Any]:
        """Check syntax and connectivity, then save the token and record the pending result."""
        try:
            self._check(account_name, api_token)
        except (ValidationError, ConnectivityError) as e:
            return {"success": False, "error": str(e)}

        try:
            self.store.set(account_name, api_token)
        except Exception as e:
            logger.error(f"Failed to save credentials for account '{account_name}': {e}")
            return {"success": False, "error": f"Failed to save credentials: {e}"}

        with self._pending_lock:
            self._pending = SetupResult(account_name=account_name)
        self._advance(SetupState.COMPLETING)
        logger.info(f"Credentials saved for account '{account_name}'")
        return {"success": True, "account_name": account_name}

    def complete(self) -> bool:
        """
        Deliver the pending result, if any, and request shutdown.

        Returns:
            True if this call delivered the result. Later calls return False.
        """
        pending = self.pending_result
        delivered = pending is not None and self._result.offer(pending)
        self.shutdown()
        return delivered

    def _check(self, account_name: str, api_token: str) -> None:
        validate_account_name(account_name)
        validate_api_token(api_token)
        self._check_connectivity(api_token)

    def _check_connectivity(self, api_token: str) -> None:
        client = self.client_factory(api_token)
        try:
            with self._session.child(timeout=self.config.validation_timeout) as cancel:
                client.list_profiles(cancel=cancel)
        except (ApiError, TransportError, OperationCancelledError, ValueError) as e:
            raise ConnectivityError(f"connection failed: {e}") from e
        finally:
            client.close()


# =============================================================================
# HTTP plumbing
# =============================================================================


class _LoopbackHTTPServer(ThreadingHTTPServer):
    daemon_threads = False

    def __init__(self, address: tuple[str, int], handler: type[BaseHTTPRequestHandler], setup_server: SetupServer):
        self.setup_server = setup_server
        super().__init__(address, handler)


class _SetupRequestHandler(BaseHTTPRequestHandler):
    server: _LoopbackHTTPServer

    timeout = SOCKET_TIMEOUT

    _ROUTES: dict[str, str] = {
        "/": "GET",
        "/success": "GET",
        "/validate": "POST",
        "/submit": "POST",
        "/complete": "POST",
    }

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(f"{self.address_string()} - {format % args}")

    def _write_body(self, raw: bytes) -> None:
        if self.command != "HEAD":
            self.wfile.write(raw)

    def _send_json(self, payload: dict[str, Any], status_code: int = 200) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self._write_body(raw)

    def _send_html(self, raw: bytes, status_code: int = 200) -> None:
        self.send_response(status_code)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.send_header("Content-Security-Policy", CONTENT_SECURITY_POLICY)
        self.send_header("X-Content-Type-Options", "nosniff")
        self.send_header("X-Frame-Options", "DENY")
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self._write_body(raw)

    def _read_credentials(self) -> tuple[str, str] | None:
        try:
            length = int(self.headers.get("Content-Length", "0"))
            payload = json.loads(self.rfile.read(length) if length > 0 else b"")
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(payload, dict):
            return None

        account_name = payload.get("account_name") or ""
        api_token = payload.get("api_token") or ""
        if not isinstance(account_name, str) or not isinstance(api_token, str):
            return None
        return account_name.strip(), api_token.strip()

    def _dispatch(self) -> None:
        path = urlparse(self.path).path
        allowed = self._ROUTES.get(path)
        if allowed is None:
            self._send_json({"success": False, "error": "Not found"}, status_code=404)
            return
        if self.command != allowed:
            self._send_json({"success": False, "error": "Method not allowed"}, status_code=405)
            return

        setup = self.server.setup_server
        if path == "/":
            self._send_html(setup.setup_page())
            return
        if path == "/success":
            self._send_html(setup.success_page())
            return

        if not setup.csrf.verify(self.headers.get(CSRF_HEADER)):
            self._send_json({"success": False, "error": "Invalid CSRF token"}, status_code=403)
            return

        if path == "/complete":
            setup.complete()
            self._send_json({"success": True})
            return

        try:
            setup.limiter.check(self.client_address[0], path)
        except TooManyAttemptsError as e:
            self._send_json({"success": False, "error": str(e)}, status_code=429)
            return

        credentials = self._read_credentials()
        if credentials is None:
            self._send_json({"success": False, "error": INVALID_REQUEST_BODY}, status_code=400)
            return

        if path == "/validate":
            self._send_json(setup.validate(*credentials))
        else:
            self._send_json(setup.submit(*credentials))

    do_GET = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_PATCH = _dispatch
    do_DELETE = _dispatch
    do_HEAD = _dispatch
    do_OPTIONS = _dispatch
