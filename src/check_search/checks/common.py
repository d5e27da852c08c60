"""Shared base class and text helpers for checks."""

import re
from abc import ABC, abstractmethod

from ..config import Settings
from ..models import Document, FindingKind, FixEdit, PolicyDecision, Range, ScanQuery


def find_match_ranges(text: str, pattern: re.Pattern) -> list[Range]:
    """Return the first match of pattern on each line, in line order.

    Args:
        text: Document text
        pattern: Compiled pattern; ``^`` anchors to the start of each line

    Returns:
        Ranges of matches (zero-based lines and characters)
    """
    ranges = []
    for i, line in enumerate(text.split("\n")):
        match = pattern.search(line)
        if match:
            ranges.append(Range.from_coords(i, match.start(), i, match.end()))
    return ranges


def line_span(range: Range) -> Range:
    """Full-line span covering range: start of its line to start of the next line."""
    return Range.from_coords(range.start.line, 0, range.end.line + 1, 0)


class Check(ABC):
    """A kind of finding: how to find candidate documents, parse them and fix them."""

    kind: FindingKind
    # Human label used in messages, e.g. "npm dependency"
    label: str
    # Short noun used in code action titles, e.g. "dependency"
    noun: str

    @abstractmethod
    def query(self, settings: Settings) -> ScanQuery:
        """Corpus search that finds candidate documents for this check."""

    @abstractmethod
    def parse(self, text: str) -> list:
        """Extract findings from a document's full text. May raise on malformed input."""

    @abstractmethod
    def locate(self, document: Document, finding) -> Range:
        """Re-find a finding in the document's current text.

        Raises:
            FindingNotFoundError: If the finding is no longer present
        """

    @abstractmethod
    def compute_fix(
        self,
        document: Document,
        finding,
        decision: PolicyDecision,
        settings: Settings,
    ) -> FixEdit:
        """Edit remediating one finding in document, given its policy decision."""

    def fix_title(self, finding) -> str | None:
        """Title of the local fix code action, or None when the kind offers no edit."""
        return None

    def reference_command(self, finding):
        """Command that opens reference material for a finding, if any."""
        return None
