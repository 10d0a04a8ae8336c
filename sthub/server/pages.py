"""HTML error pages rendered with Jinja2."""

from http import HTTPStatus
from typing import Optional

import jinja2

from sthub.core.constants import SERVER_SOFTWARE

ERROR_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{{ status }} {{ reason }}</title>
</head>
<body>
<h1>{{ status }} {{ reason }}</h1>
{% if message %}<p>{{ message }}</p>
{% endif %}<hr>
<address>{{ server }}</address>
</body>
</html>
"""

DEFAULT_MESSAGES = {
    403: "You don't have permission to access this resource.",
    404: "The requested resource was not found on this server.",
    405: "The requested method is not allowed for this resource.",
    500: "The server encountered an internal error and was unable to complete your request.",
}


class ErrorPages:
    """Render status pages from one Jinja2 template."""

    def __init__(self, template: str = ERROR_TEMPLATE, server_software: str = SERVER_SOFTWARE):
        """Initialize error page renderer.

        Args:
            template: Jinja2 template source
            server_software: Signature shown at the bottom of every page
        """
        self._env = jinja2.Environment(autoescape=True)
        self._template = self._env.from_string(template)
        self.server_software = server_software

    def render(self, status: int, message: Optional[str] = None) -> bytes:
        """Render the page for ``status``.

        Args:
            status: HTTP status code
            message: Text shown under the title (a generic one when None)

        Returns:
            UTF-8 encoded HTML
        """
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = "Error"

        html = self._template.render(
            status=status,
            reason=reason,
            message=message if message is not None else DEFAULT_MESSAGES.get(status),
            server=self.server_software,
        )
        return html.encode("utf-8")
