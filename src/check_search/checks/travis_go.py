"""Outdated Go version directives in Travis CI configs."""

import re

from ..config import Settings
from ..errors import FindingNotFoundError
from ..models import (
    Command,
    Document,
    FileFilter,
    FindingKind,
    FixEdit,
    PatternKind,
    PatternSpec,
    PolicyDecision,
    Range,
    RepoFilter,
    ScanQuery,
    VersionDirectiveFinding,
)
from .common import Check, find_match_ranges

DIRECTIVE_RE = re.compile(r"(^go:)|(^language: go)")
GO_LIST_RE = re.compile(r"^go:")

TRAVIS_GO_DOCS_URL = "https://docs.travis-ci.com/user/languages/go/"


def parse_directives(text: str) -> list[VersionDirectiveFinding]:
    """Return the first Go directive in a .travis.yml, if any."""
    findings = []
    lines = text.split("\n")
    for range in find_match_ranges(text, DIRECTIVE_RE)[:1]:
        line = lines[range.start.line]
        directive = line[range.start.character:range.end.character]
        findings.append(VersionDirectiveFinding(directive=directive, range=range))
    return findings


def version_fix(document: Document, go_version: str) -> FixEdit:
    """
    Build the edit that pins go_version in a Travis config.

    Args:
        document: Current .travis.yml
        go_version: Version token to require, e.g. "1.13.x"

    Returns:
        Empty edit if the version is already present; otherwise inserts into every
        ``go:`` list, or appends a new ``go:`` block when there is none
    """
    edit = FixEdit()
    if go_version in document.text:
        return edit

    ranges = find_match_ranges(document.text, GO_LIST_RE)
    if ranges:
        for range in ranges:
            edit.insert(document.uri, range.end, f'\n  - "{go_version}"')
    else:
        edit.insert(
            document.uri,
            document.position_at(len(document.text)),
            f'\n\ngo:\n  - "{go_version}"\n',
        )
    return edit


class TravisGoCheck(Check):
    kind = FindingKind.travis_go
    label = "Go version directive"
    noun = "Go version directive"

    def query(self, settings: Settings) -> ScanQuery:
        return ScanQuery(
            pattern=PatternSpec(pattern="", kind=PatternKind.regexp),
            repositories=RepoFilter(includes=(settings.repo_include,)),
            files=FileFilter(includes=(r"\.travis\.yml$",)),
            max_results=settings.max_results,
        )

    def parse(self, text: str) -> list[VersionDirectiveFinding]:
        return parse_directives(text)

    def locate(self, document: Document, finding: VersionDirectiveFinding) -> Range:
        lines = document.text.split("\n")
        for range in find_match_ranges(document.text, DIRECTIVE_RE):
            if lines[range.start.line][range.start.character:range.end.character] == finding.directive:
                return range
        raise FindingNotFoundError(document.uri, finding.directive)

    def compute_fix(
        self,
        document: Document,
        finding: VersionDirectiveFinding,
        decision: PolicyDecision,
        settings: Settings,
    ) -> FixEdit:
        if decision == PolicyDecision.allowed:
            return FixEdit()
        self.locate(document, finding)
        return version_fix(document, settings.go_version)

    def fix_title(self, finding: VersionDirectiveFinding) -> str:
        return "Use current Go version"

    def reference_command(self, finding: VersionDirectiveFinding) -> Command:
        return Command(title="View Travis CI docs", command="open", arguments=[TRAVIS_GO_DOCS_URL])
