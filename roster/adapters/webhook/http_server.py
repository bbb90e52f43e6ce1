"""HTTP server adapter for webhook receiver.

Provides a simple HTTP server using Python's built-in http.server module,
bridging requests onto the asyncio loop that owns the core services.

Supports optional API key authentication via the Authorization header
(Bearer token) or X-API-Key. The Squarespace order endpoint is
authenticated by its HMAC signature instead.
"""

import asyncio
import hmac
import json
import logging
from collections.abc import Callable, Coroutine
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from roster.adapters.webhook.receiver import WebhookAuthError, WebhookReceiver
from roster.core.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_BODY_SIZE = 1024 * 1024
HANDLER_TIMEOUT_SECONDS = 30

SQUARESPACE_PATH = "/api/squarespace/webhook"


def make_webhook_handler(
    webhook_receiver: WebhookReceiver,
    event_loop: asyncio.AbstractEventLoop,
    api_key: str | None,
    require_auth: bool,
) -> type[BaseHTTPRequestHandler]:
    """Factory to create a WebhookHTTPHandler class with instance-specific state.

    Args:
        webhook_receiver: Receiver for webhook operations
        event_loop: Event loop the receiver's coroutines must run on
        api_key: Optional API key for authentication
        require_auth: Whether authentication is required

    Returns:
        A WebhookHTTPHandler class configured with the provided dependencies
    """

    routes: dict[str, Callable[[dict[str, Any]], Coroutine[Any, Any, dict[str, Any]]]] = {
        "/api/payments": webhook_receiver.handle_payment,
        "/api/reconcile": lambda _data: webhook_receiver.handle_reconcile_trigger(),
        "/api/status": webhook_receiver.handle_status_request,
        "/api/expiring": webhook_receiver.handle_expiring_request,
        "/api/duplicates": webhook_receiver.handle_duplicates_request,
        "/api/duplicates/refresh": lambda _data: webhook_receiver.handle_refresh_duplicates(),
        "/api/duplicates/dismiss": lambda data: webhook_receiver.handle_dismiss_request(
            str(data.get("candidate_id") or "")
        ),
        "/api/duplicates/merge": webhook_receiver.handle_merge_request,
        "/api/conflicts": lambda _data: webhook_receiver.handle_conflicts_request(),
    }

    class WebhookHTTPHandler(BaseHTTPRequestHandler):
        """HTTP request handler for webhook endpoints."""

        def _check_auth(self) -> bool:
            """Check if request is authenticated.

            Supports two authentication methods:
            1. Authorization: Bearer <api_key>
            2. X-API-Key: <api_key>
            """
            if not require_auth:
                return True

            # Auth required - api_key must be configured
            if not api_key:
                return False

            auth_header = self.headers.get("Authorization", "")
            if auth_header.startswith("Bearer "):
                return hmac.compare_digest(auth_header[7:], api_key)

            api_key_header = self.headers.get("X-API-Key", "")
            if api_key_header:
                return hmac.compare_digest(api_key_header, api_key)

            return False

        def do_POST(self) -> None:
            """Route POST requests to the receiver."""
            if self.path == "/health":
                self._send_response({"status": "healthy"})
                return

            is_squarespace = self.path == SQUARESPACE_PATH
            if not is_squarespace and self.path not in routes:
                self.send_error(404, "Not found")
                return

            if not is_squarespace and not self._check_auth():
                self.send_error(401, "Unauthorized: invalid or missing API key")
                return

            content_length = int(self.headers.get("Content-Length", 0))
            if content_length > MAX_BODY_SIZE:
                self.send_error(413, "Request body too large")
                return

            body = self.rfile.read(content_length) if content_length > 0 else b""

            if is_squarespace:
                signature = self.headers.get("Squarespace-Signature")
                self._run_async(webhook_receiver.handle_squarespace_webhook(body, signature))
                return

            try:
                data = json.loads(body) if body else {}
            except json.JSONDecodeError:
                self.send_error(400, "Invalid JSON body")
                return
            if not isinstance(data, dict):
                self.send_error(400, "JSON body must be an object")
                return

            self._run_async(routes[self.path](data))

        def do_GET(self) -> None:
            """Health check is public (no auth required)."""
            if self.path == "/health":
                self._send_response({"status": "healthy"})
            else:
                self.send_error(404, "Not found")

        def _run_async(self, coro: Coroutine[Any, Any, dict[str, Any]]) -> None:
            """Run a receiver coroutine on the event loop and send its result."""
            future = asyncio.run_coroutine_threadsafe(coro, event_loop)
            try:
                result = future.result(timeout=HANDLER_TIMEOUT_SECONDS)
            except WebhookAuthError as e:
                self._send_response({"status": "error", "message": str(e)}, status=401)
            except ValueError as e:
                # ValidationError and unknown-id lookups both land here
                kind = "validation" if isinstance(e, ValidationError) else "request"
                logger.info(f"Rejected {kind} on {self.path}: {e}")
                self._send_response({"status": "error", "message": str(e)}, status=400)
            except TimeoutError:
                future.cancel()
                logger.error(f"Webhook handler for {self.path} timed out")
                self._send_response(
                    {"status": "error", "message": "Request timed out"}, status=504
                )
            except Exception as e:
                # Log full exception server-side for debugging
                logger.error(f"Error handling webhook request: {e}", exc_info=True)
                # Return generic error to client without details
                self.send_error(500, "Internal server error")
            else:
                self._send_response(result)

        def _send_response(self, data: dict[str, Any], status: int = 200) -> None:
            """Send JSON response."""
            payload = json.dumps(data).encode()
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format: str, *args: Any) -> None:
            """Log HTTP request."""
            logger.debug(f"HTTP {self.client_address[0]}: {format % args}")

    return WebhookHTTPHandler


class WebhookHTTPServer:
    """Webhook HTTP server adapter.

    Optionally requires API key authentication for webhook endpoints.
    """

    def __init__(
        self,
        webhook_receiver: WebhookReceiver,
        host: str = "0.0.0.0",
        port: int = 8080,
        api_key: str | None = None,
        require_auth: bool = False,
    ):
        """Initialize the HTTP server.

        Args:
            webhook_receiver: WebhookReceiver instance to handle requests.
            host: Host to listen on (default 0.0.0.0).
            port: Port to listen on (default 8080). Use 0 to pick a free port.
            api_key: Optional API key for authentication.
            require_auth: Whether to require authentication (default False).
                If True, api_key must be provided.
        """
        self.webhook_receiver = webhook_receiver
        self.host = host
        self.port = port
        self.api_key = api_key
        self.require_auth = require_auth
        self.server: ThreadingHTTPServer | None = None
        self._server_task: asyncio.Task[None] | None = None

        if require_auth and not api_key:
            logger.warning(
                "Authentication required but no API key provided. "
                "Webhook endpoints will reject all authenticated requests."
            )

    @property
    def bound_port(self) -> int:
        """Port the server actually listens on (differs from port when 0)."""
        if self.server is None:
            return self.port
        return self.server.server_address[1]

    async def start(self) -> None:
        """Start the HTTP server."""
        handler_class = make_webhook_handler(
            webhook_receiver=self.webhook_receiver,
            event_loop=asyncio.get_running_loop(),
            api_key=self.api_key,
            require_auth=self.require_auth,
        )

        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)

        # Run the blocking server loop in a thread to avoid blocking the event loop
        self._server_task = asyncio.create_task(self._run_server())
        logger.info(
            f"Webhook HTTP server started on {self.host}:{self.bound_port}"
            + (" (with API key authentication)" if self.require_auth else "")
        )

    async def _run_server(self) -> None:
        if not self.server:
            return

        try:
            await asyncio.to_thread(self.server.serve_forever)
        except asyncio.CancelledError:
            # Normal shutdown
            pass
        except Exception as e:
            logger.error(f"Webhook HTTP server error: {e}", exc_info=True)

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self.server:
            await asyncio.to_thread(self.server.shutdown)
            self.server.server_close()
        if self._server_task:
            self._server_task.cancel()
            try:
                await self._server_task
            except asyncio.CancelledError:
                pass
        logger.info("Webhook HTTP server stopped")
