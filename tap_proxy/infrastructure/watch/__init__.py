"""Filesystem change notifications."""

from .log_directory_watcher import LogDirectoryWatcher

__all__ = ["LogDirectoryWatcher"]
