#!/usr/bin/env python3
"""Filesystem probe capability used by rewrite conditions and try-files.

The rewrite engine never touches the filesystem directly. Conditions such as
``-f`` and ``-d`` and the try-files policy ask an injected FileProbe instead:
- OsFileProbe answers from os.stat/os.lstat
- CachingFileProbe memoizes another probe in the PROBE cache level

Example:
    >>> probe = CachingFileProbe(OsFileProbe(), CacheManager())
    >>> probe.is_file("/var/www/html/index.html")
    True
"""

import os
import stat
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sthub.core.cache import CacheLevel, CacheManager


class FileProbe(ABC):
    """Stat-like questions about real paths.

    Implementations must be safe to call from several request threads.
    """

    @abstractmethod
    def is_file(self, path: str) -> bool:
        """Return True if ``path`` is a regular file."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Return True if ``path`` is a directory."""

    @abstractmethod
    def is_nonempty_file(self, path: str) -> bool:
        """Return True if ``path`` is a regular file with size > 0."""

    @abstractmethod
    def is_symlink(self, path: str) -> bool:
        """Return True if ``path`` is a symbolic link."""

    @abstractmethod
    def is_executable(self, path: str) -> bool:
        """Return True if ``path`` exists and is executable by this process."""


class OsFileProbe(FileProbe):
    """Probe backed by the operating system."""

    def _stat(self, path: str) -> Optional[os.stat_result]:
        if not path or "\x00" in path:
            return None
        try:
            return os.stat(path)
        except (OSError, ValueError):
            return None

    def is_file(self, path: str) -> bool:
        st = self._stat(path)
        return st is not None and stat.S_ISREG(st.st_mode)

    def is_dir(self, path: str) -> bool:
        st = self._stat(path)
        return st is not None and stat.S_ISDIR(st.st_mode)

    def is_nonempty_file(self, path: str) -> bool:
        st = self._stat(path)
        return st is not None and stat.S_ISREG(st.st_mode) and st.st_size > 0

    def is_symlink(self, path: str) -> bool:
        if not path or "\x00" in path:
            return False
        try:
            return stat.S_ISLNK(os.lstat(path).st_mode)
        except (OSError, ValueError):
            return False

    def is_executable(self, path: str) -> bool:
        return self._stat(path) is not None and os.access(path, os.X_OK)


class CachingFileProbe(FileProbe):
    """Memoize the answers of another probe for the PROBE cache TTL.

    Answers are cached per (question, path) so a burst of requests for the
    same missing asset costs one stat() per TTL window.
    """

    NAMESPACE = "probe"

    def __init__(self, inner: FileProbe, cache: CacheManager):
        """Initialize caching probe.

        Args:
            inner: Probe answering cache misses
            cache: Cache manager holding the PROBE level
        """
        self.inner = inner
        self.cache = cache

    def _cached(self, question: str, path: str, ask: Callable[[str], bool]) -> bool:
        key = f"{question}:{path}"
        answer = self.cache.get(self.NAMESPACE, key, level=CacheLevel.PROBE)
        if answer is None:
            answer = bool(ask(path))
            self.cache.set(self.NAMESPACE, key, answer, size=len(key) + 8, level=CacheLevel.PROBE)
        return answer

    def is_file(self, path: str) -> bool:
        return self._cached("f", path, self.inner.is_file)

    def is_dir(self, path: str) -> bool:
        return self._cached("d", path, self.inner.is_dir)

    def is_nonempty_file(self, path: str) -> bool:
        return self._cached("s", path, self.inner.is_nonempty_file)

    def is_symlink(self, path: str) -> bool:
        return self._cached("l", path, self.inner.is_symlink)

    def is_executable(self, path: str) -> bool:
        return self._cached("x", path, self.inner.is_executable)

    def invalidate(self) -> None:
        """Drop every cached answer."""
        self.cache.clear(CacheLevel.PROBE)
