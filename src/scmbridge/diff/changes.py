"""Per-line change annotations from unified diff text.

Lines are numbered in the destination (current) file. Removed lines no longer
exist there, so a run of deletions is anchored at the position the removed
text used to occupy and reported once.
"""

import re
from typing import Dict, List, Optional, Set, Tuple

from scmbridge.models import LineStatus

LineChangeMap = Dict[int, LineStatus]

Range = Tuple[int, int]

# Counts are optional in unified diffs and default to 1
HUNK_HEADER = re.compile(r"^@@\s+-(\d+)(?:,(\d+))?\s+\+(\d+)(?:,(\d+))?\s+@@")


class _DiffScanner:
    """Walks hunks and records deletion/addition ranges in new-file coordinates."""

    def __init__(self) -> None:
        self.deletions: List[Range] = []
        self.additions: List[Range] = []
        self.added_lines: Set[int] = set()
        # insertions minus deletions consumed so far, maps old lines to new ones
        self.offset = 0
        self.old_pos = self.old_end = 0
        self.new_pos = self.new_end = 0
        self._deletion: Optional[List[int]] = None
        self._addition: Optional[List[int]] = None

    @property
    def in_hunk(self) -> bool:
        return self.old_pos > 0 or self.new_pos > 0

    def start_file(self) -> None:
        self.finish()
        self.offset = 0

    def start_hunk(self, old_start: int, old_count: int, new_start: int, new_count: int) -> None:
        self.finish()
        # an empty side never advances
        if old_start > 0 and old_count > 0:
            self.old_pos, self.old_end = old_start, old_start + old_count
        else:
            self.old_pos = self.old_end = 0
        if new_start > 0 and new_count > 0:
            self.new_pos, self.new_end = new_start, new_start + new_count
        else:
            self.new_pos = self.new_end = 0

    def feed(self, marker: str) -> None:
        if marker == "-":
            if not self.old_pos:
                return
            anchor = self.old_pos + self.offset
            if self._deletion is None:
                self._deletion = [anchor, anchor]
            else:
                self._deletion[1] += 1
            self.offset -= 1
            self._advance_old()
        elif marker == "+":
            if not self.new_pos:
                return
            if self._addition is None:
                self._addition = [self.new_pos, self.new_pos]
            else:
                self._addition[1] = self.new_pos
            self.added_lines.add(self.new_pos)
            self.offset += 1
            self._advance_new()
        else:
            self._flush_deletion()
            self._flush_addition()
            if self.old_pos:
                self._advance_old()
            if self.new_pos:
                self._advance_new()

    def finish(self) -> None:
        self._flush_deletion()
        self._flush_addition()
        self.old_pos = self.old_end = 0
        self.new_pos = self.new_end = 0

    def _advance_old(self) -> None:
        self.old_pos += 1
        if self.old_pos >= self.old_end:
            self.old_pos = 0
            self._flush_deletion()

    def _advance_new(self) -> None:
        self.new_pos += 1
        if self.new_pos >= self.new_end:
            self.new_pos = 0
            self._flush_addition()

    def _flush_deletion(self) -> None:
        if self._deletion is not None:
            self.deletions.append((self._deletion[0], self._deletion[1]))
            self._deletion = None

    def _flush_addition(self) -> None:
        if self._addition is not None:
            self.additions.append((self._addition[0], self._addition[1]))
            self._addition = None

    def reconcile(self) -> LineChangeMap:
        changes: LineChangeMap = {}
        pending = set(self.additions)

        for start, end in self.deletions:
            if (start, end) in pending:
                # same span deleted and inserted: an edit, not two changes
                pending.discard((start, end))
                for line in range(start, end + 1):
                    changes[line] = LineStatus.MODIFICATION
                continue
            for line in range(start, end + 1):
                if line in self.added_lines:
                    changes[line] = LineStatus.MODIFICATION
                else:
                    changes[line] = LineStatus.DELETION
                    break

        for start, end in self.additions:
            if (start, end) not in pending:
                continue
            for line in range(start, end + 1):
                changes.setdefault(line, LineStatus.ADDITION)

        return dict(sorted(changes.items()))


def classify_lines(diff: str) -> LineChangeMap:
    """Classify the lines of the current file touched by ``diff``.

    Args:
        diff: Unified diff text with one or more hunks

    Returns:
        Mapping of destination line number to its change status. Lines
        absent from the mapping are unchanged. Malformed input never raises;
        unparsable lines are ignored.
    """
    scanner = _DiffScanner()
    for line in diff.splitlines():
        if line.startswith("@@"):
            header = HUNK_HEADER.match(line)
            if header:
                old_start, old_count, new_start, new_count = header.groups()
                scanner.start_hunk(
                    int(old_start),
                    int(old_count) if old_count is not None else 1,
                    int(new_start),
                    int(new_count) if new_count is not None else 1,
                )
            else:
                scanner.finish()
        elif line.startswith("diff "):
            scanner.start_file()
        elif scanner.in_hunk:
            if line == "" or line[0] in " \t":
                scanner.feed(" ")
            elif line[0] in "+-":
                scanner.feed(line[0])
    scanner.finish()
    return scanner.reconcile()
