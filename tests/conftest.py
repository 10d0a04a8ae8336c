"""Shared pytest fixtures for STHub tests."""
import copy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from sthub.core.constants import DEFAULT_CONFIG
from sthub.rewrite.conditions import RewriteContext
from sthub.rewrite.probe import FileProbe


class RecordingProbe(FileProbe):
    """In-memory probe that records every question it is asked."""

    def __init__(
        self,
        files: Iterable[str] = (),
        dirs: Iterable[str] = (),
        empty: Iterable[str] = (),
        symlinks: Iterable[str] = (),
        executables: Iterable[str] = (),
    ):
        self.files = set(files)
        self.dirs = set(dirs)
        self.empty = set(empty)
        self.symlinks = set(symlinks)
        self.executables = set(executables)
        self.calls: List[Tuple[str, str]] = []

    def is_file(self, path: str) -> bool:
        self.calls.append(("is_file", path))
        return path in self.files

    def is_dir(self, path: str) -> bool:
        self.calls.append(("is_dir", path))
        return path in self.dirs

    def is_nonempty_file(self, path: str) -> bool:
        self.calls.append(("is_nonempty_file", path))
        return path in self.files and path not in self.empty

    def is_symlink(self, path: str) -> bool:
        self.calls.append(("is_symlink", path))
        return path in self.symlinks

    def is_executable(self, path: str) -> bool:
        self.calls.append(("is_executable", path))
        return path in self.executables


def make_context(
    probe: Optional[FileProbe] = None,
    environ: Optional[Dict[str, str]] = None,
    document_root: str = "/srv",
    request_uri: str = "/",
    **variables: str,
) -> RewriteContext:
    """Build a RewriteContext with the usual request variables."""
    values = {"DOCUMENT_ROOT": document_root, "REQUEST_URI": request_uri}
    values.update(variables)
    return RewriteContext(variables=values, probe=probe or RecordingProbe(), environ=environ or {})


@pytest.fixture
def probe() -> RecordingProbe:
    """Empty recording probe."""
    return RecordingProbe()


@pytest.fixture
def document_root(tmp_path: Path) -> Path:
    """Create a document root with a small single-page application."""
    root = tmp_path / "www"
    root.mkdir()

    (root / "index.html").write_text("<html>home</html>")
    (root / "app.js").write_text("console.log('app');")
    (root / "style.css").write_text("body {}")

    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<html>docs</html>")
    (root / "docs" / "guide.txt").write_text("guide")

    (root / "empty").mkdir()

    return root


@pytest.fixture
def sample_config(document_root: Path) -> Dict[str, Any]:
    """Provide a complete configuration serving ``document_root``."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    config["network"]["port"] = 8080
    config["hubs"]["static"]["path"] = str(document_root)
    config["global"]["headers"] = {"X-Frame-Options": "DENY"}
    config["hubs"]["static"]["headers"] = {"Cache-Control": "no-cache"}
    config["hubs"]["configuration"]["headers"] = {"Cache-Control": "no-store"}
    return config


@pytest.fixture
def config_file(tmp_path: Path, document_root: Path) -> Path:
    """Write a YAML configuration file for the CLI."""
    path = tmp_path / "conf.yaml"
    path.write_text(
        "network:\n"
        "  host: 127.0.0.1\n"
        "  port: 9000\n"
        "hubs:\n"
        "  static:\n"
        f"    path: {document_root}\n"
        "    rewrite_rules: |\n"
        "      RewriteEngine On\n"
        "      RewriteRule ^/old/(.*) /new/$1 [R=301]\n"
    )
    return path


@pytest.fixture
def probe_factory():
    """Factory for recording probes with preset files and directories."""
    return RecordingProbe


@pytest.fixture
def context_factory():
    """Factory for request contexts (see make_context)."""
    return make_context
