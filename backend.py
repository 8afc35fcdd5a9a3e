"""
Backend abstraction for file operations.
Every tool touches the filesystem through a backend rooted at one directory,
so paths supplied by the model can never escape it.
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from typing import List

import pathspec

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Abstract backend for file system operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read a text file."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Read a file's raw bytes."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write a text file, creating parent directories."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Return True if path exists."""

    @abstractmethod
    def remove_file(self, path: str) -> None:
        """Delete a file."""

    @abstractmethod
    def copy_file(self, src: str, dst: str) -> None:
        """Copy src over dst, creating dst's parent directories."""

    @abstractmethod
    def match_files(self, spec: pathspec.PathSpec) -> List[str]:
        """Relative paths of all files matching a gitwildmatch spec."""

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory."""
        if os.path.isabs(path):
            return os.path.normpath(path)
        return os.path.normpath(os.path.join(self.working_directory, path))

    def _ensure_under_working(self, resolved: str) -> None:
        """Raise ValueError if resolved path escapes the working directory. Overridden by backends."""
        pass


class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.realpath(resolved)
        wd = os.path.realpath(self._working_directory)
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def _full(self, path: str) -> str:
        full = self.resolve_path(path)
        self._ensure_under_working(full)
        return full

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def read_bytes(self, path: str) -> bytes:
        with open(self._full(path), "rb") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def remove_file(self, path: str) -> None:
        os.remove(self._full(path))

    def copy_file(self, src: str, dst: str) -> None:
        full_dst = self._full(dst)
        os.makedirs(os.path.dirname(full_dst), exist_ok=True)
        shutil.copyfile(self._full(src), full_dst)

    def match_files(self, spec: pathspec.PathSpec) -> List[str]:
        if not os.path.isdir(self._working_directory):
            return []
        return sorted(spec.match_tree_files(self._working_directory))
