#!/usr/bin/env python3
"""HTTP request handler for the delivery hub.

Every request is routed to one of:
- the configuration endpoint (environment tree as JSON)
- the static hub (rewrite decision, then file/redirect/403/404)
- a 404 for paths outside both hubs

The handler never lets an exception escape: unexpected errors become a
generic 500 page and are logged with their traceback.
"""

import email.utils
import http.server
import mimetypes
import os
import time
from typing import List, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

from sthub.core.cache import CacheLevel
from sthub.core.constants import SERVER_SOFTWARE, Limits
from sthub.core.validators import safe_join
from sthub.environment.tree import EnvironmentTree
from sthub.rewrite.conditions import RewriteContext, time_variables
from sthub.rewrite.decision import Decision, Forbidden, RedirectTo, Serve
from sthub.rewrite.errors import InvalidRewriteTarget, RewriteLoopError

ALLOWED_METHODS = "GET, HEAD"
ENV_TREE_NAMESPACE = "env_tree"
# Framing and routing headers custom configuration may not replace
PROTECTED_HEADERS = {"content-length", "location", "allow"}
# Reserved and already-escaped characters stay as they are in a Location
LOCATION_SAFE = "/:?&=#%@!$'()*+,;~[]"


class HubRequestHandler(http.server.BaseHTTPRequestHandler):
    """Request handler bound to a HubServer through ``self.server.hub``."""

    server_version = SERVER_SOFTWARE
    sys_version = ""

    def log_message(self, format, *args):
        """Route http.server's own messages to our logger."""
        self.server.hub.logger.debug(format % args)

    # =========================================================================
    # Entry points
    # =========================================================================

    def do_GET(self):
        """Handle GET requests."""
        self._handle(send_body=True)

    def do_HEAD(self):
        """Handle HEAD requests."""
        self._handle(send_body=False)

    def _method_not_allowed(self):
        start = time.monotonic()
        hub = self.server.hub
        self._status = 405
        self._send_page(
            405,
            hub.settings.headers.global_headers,
            send_body=True,
            extra=[("Allow", ALLOWED_METHODS)],
        )
        self._log_request(start)

    do_POST = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _method_not_allowed

    def _handle(self, send_body: bool) -> None:
        start = time.monotonic()
        hub = self.server.hub
        settings = hub.settings
        self._status = 500
        self._started = False

        try:
            parts = urlsplit(self.path)
            path = unquote(parts.path) or "/"

            if path == settings.configuration_path:
                self._serve_environment(send_body)
                return

            working_path = settings.strip_prefix(path)
            if working_path is None:
                self._send_page(404, settings.headers.global_headers, send_body)
                return

            self._serve_static(working_path, parts.query, send_body)

        except (BrokenPipeError, ConnectionResetError):
            hub.logger.debug("Client disconnected", path=self.path)
        except Exception as e:
            hub.logger.exception("Request failed", e, method=self.command, path=self.path)
            if not self._started:
                self._send_page(500, settings.headers.global_headers, send_body)
        finally:
            self._log_request(start)

    def _log_request(self, start: float) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        self.server.hub.logger.info(
            "Request handled",
            method=self.command,
            path=self.path,
            status=self._status,
            duration_ms=f"{duration_ms:.2f}",
        )

    # =========================================================================
    # Configuration endpoint
    # =========================================================================

    def _serve_environment(self, send_body: bool) -> None:
        hub = self.server.hub
        settings = hub.settings

        prefix = settings.env_prefix

        payload = None
        if settings.configuration_cache:
            payload = hub.cache.get(ENV_TREE_NAMESPACE, prefix, level=CacheLevel.PAYLOAD)

        if payload is None:
            tree = EnvironmentTree.for_provider(prefix, hub.environ)
            payload = tree.to_json().encode("utf-8")
            if settings.configuration_cache:
                hub.cache.set(ENV_TREE_NAMESPACE, prefix, payload, level=CacheLevel.PAYLOAD)

        headers = [("Content-Type", "application/json"), ("Content-Length", str(len(payload)))]
        self._send(200, headers, settings.headers.configuration_headers)
        if send_body:
            self.wfile.write(payload)

    # =========================================================================
    # Static hub
    # =========================================================================

    def _rewrite_context(self, working_path: str, query: str) -> RewriteContext:
        hub = self.server.hub
        settings = hub.settings
        server_host, server_port = self.server.server_address[:2]
        host_header = self.headers.get("Host", "")

        variables = {
            "DOCUMENT_ROOT": settings.document_root,
            "REQUEST_URI": working_path,
            "REQUEST_FILENAME": settings.document_root + working_path,
            "REQUEST_METHOD": self.command,
            "QUERY_STRING": query,
            "REMOTE_ADDR": self.client_address[0],
            "REMOTE_HOST": self.client_address[0],
            "REMOTE_PORT": str(self.client_address[1]),
            "SERVER_NAME": host_header.rsplit(":", 1)[0] if host_header else str(server_host),
            "SERVER_ADDR": str(server_host),
            "SERVER_PORT": str(server_port),
            "SERVER_PROTOCOL": self.request_version,
            "SERVER_SOFTWARE": SERVER_SOFTWARE,
            "HTTPS": "off",
            "HTTP_HOST": host_header,
            "HTTP_USER_AGENT": self.headers.get("User-Agent", ""),
            "HTTP_REFERER": self.headers.get("Referer", ""),
        }
        variables.update(time_variables())
        return RewriteContext(variables=variables, probe=hub.probe, environ=hub.environ)

    def _serve_static(self, working_path: str, query: str, send_body: bool) -> None:
        hub = self.server.hub
        settings = hub.settings
        headers = settings.headers.static_headers

        try:
            decision = hub.engine.decide(working_path, self._rewrite_context(working_path, query))
        except InvalidRewriteTarget as e:
            hub.logger.error(
                "Rewrite generated an invalid uri",
                path=working_path,
                target=e.target,
                line=e.line,
            )
            self._send_page(500, headers, send_body)
            return
        except RewriteLoopError as e:
            hub.logger.error(
                "Rewrite did not settle", path=working_path, passes=e.passes, line=e.line
            )
            self._send_page(500, headers, send_body)
            return

        self._execute(decision, query, headers, send_body)

    def _execute(
        self, decision: Decision, query: str, headers: List[Tuple[str, str]], send_body: bool
    ) -> None:
        settings = self.server.hub.settings

        if isinstance(decision, Serve):
            self._send_file(decision.path, headers, send_body)
        elif isinstance(decision, RedirectTo):
            location = quote(decision.location, safe=LOCATION_SAFE)
            if location.startswith("/"):
                location = settings.add_prefix(location)
            if query:
                location += ("&" if "?" in location else "?") + query
            self._send_page(
                decision.code, headers, send_body, extra=[("Location", location)], message=""
            )
        elif isinstance(decision, Forbidden):
            self._send_page(403, headers, send_body)
        else:
            self._send_page(404, headers, send_body)

    def _send_file(self, path: str, headers: List[Tuple[str, str]], send_body: bool) -> None:
        settings = self.server.hub.settings
        # A rewritten target may carry its own query string
        real_path = safe_join(settings.document_root, urlsplit(path).path)

        if real_path is not None and os.path.isdir(real_path):
            real_path = os.path.join(real_path, settings.default_document)

        if real_path is None or not os.path.isfile(real_path):
            self._send_page(404, headers, send_body)
            return

        try:
            f = open(real_path, "rb")
        except OSError as e:
            self.server.hub.logger.warning("Cannot open file", path=real_path, error=str(e))
            self._send_page(404, headers, send_body)
            return

        with f:
            st = os.fstat(f.fileno())
            content_type = mimetypes.guess_type(real_path)[0] or "application/octet-stream"
            standard = [
                ("Content-Type", content_type),
                ("Content-Length", str(st.st_size)),
                ("Last-Modified", email.utils.formatdate(st.st_mtime, usegmt=True)),
            ]
            self._send(200, standard, headers)
            if not send_body:
                return
            while True:
                chunk = f.read(Limits.READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.wfile.write(chunk)

    # =========================================================================
    # Response helpers
    # =========================================================================

    def _send(
        self, status: int, standard: List[Tuple[str, str]], custom: List[Tuple[str, str]]
    ) -> None:
        """Send status line and headers; custom headers replace standard ones."""
        merged = {name.lower(): (name, value) for name, value in standard}
        for name, value in custom:
            if name.lower() in PROTECTED_HEADERS:
                continue
            merged[name.lower()] = (name, value)

        # Fail before the status line is buffered
        for _, value in merged.values():
            value.encode("latin-1")

        self.send_response(status)
        for name, value in merged.values():
            self.send_header(name, value)
        self.end_headers()
        self._status = status
        self._started = True

    def _send_page(
        self,
        status: int,
        headers: List[Tuple[str, str]],
        send_body: bool,
        extra: Optional[List[Tuple[str, str]]] = None,
        message: Optional[str] = None,
    ) -> None:
        body = self.server.hub.pages.render(status, message)
        standard = [
            ("Content-Type", "text/html; charset=utf-8"),
            ("Content-Length", str(len(body))),
        ]
        self._send(status, standard + list(extra or []), headers)
        if send_body:
            self.wfile.write(body)
