"""Unified diff analysis."""

from scmbridge.diff.changes import LineChangeMap, classify_lines

__all__ = ["LineChangeMap", "classify_lines"]
