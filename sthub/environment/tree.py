#!/usr/bin/env python3
"""Environment-variable-to-JSON tree builder.

Variables that start with a prefix such as ``STHUB__`` are split on ``__``
and folded into a nested mapping:

    STHUB__API__URL=https://api      ->  {"API": {"URL": "https://api"}}
    STHUB__API__RETRY__MAX=3         ->  {"API": {"RETRY": {"MAX": "3"}}}

Leaves are always strings and numeric segments stay object keys.

Example:
    >>> tree = EnvironmentTree("STHUB__", {"STHUB__A__B": "1"})
    >>> tree.build()
    {'A': {'B': '1'}}
"""

import json
import os
from typing import Any, Dict, List, Mapping, Optional

from sthub.core.constants import ENV_TREE_SEPARATOR


class EnvironmentTree:
    """Build a nested dict from prefixed environment variables."""

    def __init__(self, prefix: str, environ: Optional[Mapping[str, str]] = None):
        """Initialize tree builder.

        Args:
            prefix: Variable name prefix, ending with the ``__`` separator
            environ: Environment mapping (os.environ when None, read per build)

        Raises:
            ValueError: If ``prefix`` does not end with the separator
        """
        if not prefix.endswith(ENV_TREE_SEPARATOR):
            raise ValueError(f"Prefix must end with '{ENV_TREE_SEPARATOR}': {prefix!r}")
        self.prefix = prefix
        self._environ = environ

    @classmethod
    def for_provider(
        cls, prefix: str, environ: Optional[Mapping[str, str]] = None
    ) -> "EnvironmentTree":
        """Build from a configured provider prefix (``STHUB`` becomes ``STHUB__``)."""
        return cls(prefix + ENV_TREE_SEPARATOR, environ)

    def build(self) -> Dict[str, Any]:
        """Return the nested tree for the current environment."""
        environ = os.environ if self._environ is None else self._environ
        root: Dict[str, Any] = {}

        for key in sorted(environ):
            if not key.startswith(self.prefix) or key == self.prefix:
                continue
            parts = key[len(self.prefix):].split(ENV_TREE_SEPARATOR)
            self._insert(root, parts, str(environ[key]))

        return root

    def _insert(self, node: Dict[str, Any], parts: List[str], value: str) -> None:
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                # Existing leaf wins; the deeper variable is dropped
                return
            node = child
        node[parts[-1]] = value

    def to_json(self) -> str:
        """Serialize the tree with sorted keys."""
        return json.dumps(self.build(), sort_keys=True)
