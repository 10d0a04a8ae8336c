"""Tests for filesystem probes."""

import os

import pytest

from sthub.core.cache import CacheManager
from sthub.rewrite.probe import CachingFileProbe, OsFileProbe


class TestOsFileProbe:
    """Tests for the stat-backed probe."""

    def test_file_and_dir(self, document_root):
        probe = OsFileProbe()

        assert probe.is_file(str(document_root / "app.js"))
        assert not probe.is_file(str(document_root / "docs"))
        assert probe.is_dir(str(document_root / "docs"))
        assert not probe.is_dir(str(document_root / "app.js"))

    def test_missing_path(self, document_root):
        probe = OsFileProbe()
        missing = str(document_root / "missing")

        assert not probe.is_file(missing)
        assert not probe.is_dir(missing)
        assert not probe.is_nonempty_file(missing)
        assert not probe.is_symlink(missing)
        assert not probe.is_executable(missing)

    def test_nonempty_file(self, document_root):
        (document_root / "blank.txt").write_text("")
        probe = OsFileProbe()

        assert probe.is_nonempty_file(str(document_root / "app.js"))
        assert not probe.is_nonempty_file(str(document_root / "blank.txt"))

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
    def test_symlink(self, document_root):
        link = document_root / "link.js"
        os.symlink(document_root / "app.js", link)
        probe = OsFileProbe()

        assert probe.is_symlink(str(link))
        assert not probe.is_symlink(str(document_root / "app.js"))

    def test_executable(self, document_root):
        script = document_root / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)

        assert OsFileProbe().is_executable(str(script))

    def test_nul_byte(self):
        probe = OsFileProbe()

        assert not probe.is_file("/srv/a\x00b")
        assert not probe.is_symlink("/srv/a\x00b")
        assert not probe.is_file("")


class TestCachingFileProbe:
    """Tests for the memoizing probe."""

    def test_answers_are_cached(self, probe_factory):
        inner = probe_factory(files=["/srv/a"])
        probe = CachingFileProbe(inner, CacheManager())

        assert probe.is_file("/srv/a")
        assert probe.is_file("/srv/a")
        assert inner.calls == [("is_file", "/srv/a")]

    def test_negative_answers_are_cached(self, probe_factory):
        inner = probe_factory()
        probe = CachingFileProbe(inner, CacheManager())

        assert not probe.is_dir("/srv/a")
        assert not probe.is_dir("/srv/a")
        assert inner.calls == [("is_dir", "/srv/a")]

    def test_questions_are_cached_separately(self, probe_factory):
        inner = probe_factory(files=["/srv/a"])
        probe = CachingFileProbe(inner, CacheManager())

        assert probe.is_file("/srv/a")
        assert not probe.is_dir("/srv/a")
        assert probe.is_nonempty_file("/srv/a")
        assert not probe.is_symlink("/srv/a")
        assert not probe.is_executable("/srv/a")
        assert len(inner.calls) == 5

    def test_invalidate(self, probe_factory):
        inner = probe_factory()
        probe = CachingFileProbe(inner, CacheManager())

        assert not probe.is_file("/srv/a")
        inner.files.add("/srv/a")
        assert not probe.is_file("/srv/a")

        probe.invalidate()
        assert probe.is_file("/srv/a")

    def test_disabled_cache(self, probe_factory):
        inner = probe_factory(files=["/srv/a"])
        probe = CachingFileProbe(inner, CacheManager.from_config({"enabled": False}))

        probe.is_file("/srv/a")
        probe.is_file("/srv/a")
        assert len(inner.calls) == 2
