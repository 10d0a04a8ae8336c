"""Try-files routing policy.

Used when the static hub has no rewrite rules, and after a rule pass that
fired nothing: serve the requested file, else the directory's default
document, else (try-files mode only) the default document at the mount root.
"""

import os

from sthub.core.constants import DEFAULT_DOCUMENT
from sthub.core.validators import safe_join
from sthub.rewrite.decision import NO_MATCH, Decision, Serve
from sthub.rewrite.probe import FileProbe


class TryFiles:
    """Default document-root lookup producing a routing Decision."""

    def __init__(
        self, document_root: str, probe: FileProbe, default_document: str = DEFAULT_DOCUMENT
    ):
        """Initialize try-files policy.

        Args:
            document_root: Directory the static hub serves
            probe: Filesystem probe capability
            default_document: Index file name (e.g., index.html)
        """
        self.document_root = os.path.abspath(document_root)
        self.probe = probe
        self.default_document = default_document

    def decide(self, request_path: str, root_default: bool = True) -> Decision:
        """Decide what to serve for ``request_path``.

        Args:
            request_path: Path relative to the mount prefix
            root_default: Fall back to the default document at the mount root

        Returns:
            Serve for the first candidate that exists, otherwise NoMatch
        """
        real_path = safe_join(self.document_root, request_path)
        if real_path is None:
            return NO_MATCH

        if self.probe.is_file(real_path):
            return Serve(request_path)

        if self.probe.is_dir(real_path):
            if self.probe.is_file(os.path.join(real_path, self.default_document)):
                return Serve(request_path.rstrip("/") + "/" + self.default_document)

        root_index = os.path.join(self.document_root, self.default_document)
        if root_default and self.probe.is_file(root_index):
            return Serve("/" + self.default_document)

        return NO_MATCH
