"""Pydantic models for the check-search pipeline."""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PatternKind(str, Enum):
    """How a search pattern is interpreted."""

    literal = "literal"
    regexp = "regexp"


class FindingKind(str, Enum):
    """Kind of fact a check extracts from a document."""

    npm_dependency = "npm_dependency"
    travis_go = "travis_go"


class PolicyDecision(str, Enum):
    """Tri-state policy classification for a finding."""

    allowed = "allow"
    forbidden = "forbid"
    unreviewed = "unreviewed"


class PolicyScope(str, Enum):
    """Where a policy reclassification applies."""

    repository = "repository"
    global_ = "global"


class PolicyUpdateOutcome(str, Enum):
    """Result of asking the policy store to record a decision."""

    accepted = "accepted"
    not_implemented = "not_implemented"


class Severity(str, Enum):
    """Diagnostic severity, ordered from most to least severe."""

    error = "error"
    warning = "warning"
    information = "information"
    hint = "hint"


# =============================================================================
# Search
# =============================================================================


class PatternSpec(BaseModel):
    """A search pattern and how to interpret it."""

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(description="Text or regular expression to search for")
    kind: PatternKind = Field(default=PatternKind.regexp)


class RepoFilter(BaseModel):
    """Repository name filter applied before searching."""

    model_config = ConfigDict(frozen=True)

    includes: tuple[str, ...] = Field(default=(), description="Repository patterns to include")
    excludes: tuple[str, ...] = Field(default=(), description="Repository patterns to exclude")
    kind: PatternKind = Field(default=PatternKind.regexp)


class FileFilter(BaseModel):
    """Repository-relative file path filter."""

    model_config = ConfigDict(frozen=True)

    includes: tuple[str, ...] = Field(default=(), description="File path patterns to include")
    excludes: tuple[str, ...] = Field(default=(), description="File path patterns to exclude")
    kind: PatternKind = Field(default=PatternKind.regexp)


class ScanQuery(BaseModel):
    """A complete corpus search request. Frozen so it can key the memo cache."""

    model_config = ConfigDict(frozen=True)

    pattern: PatternSpec
    repositories: RepoFilter = Field(default_factory=RepoFilter)
    files: FileFilter = Field(default_factory=FileFilter)
    max_results: int = Field(default=1000, ge=0, description="Hard cutoff on returned matches")

    def to_request(self) -> dict:
        """Render the wire shape sent to a remote search service."""
        return {
            "pattern": self.pattern.pattern,
            "kind": self.pattern.kind.value,
            "repositories": {
                "includes": list(self.repositories.includes),
                "excludes": list(self.repositories.excludes),
                "kind": self.repositories.kind.value,
            },
            "files": {
                "includes": list(self.files.includes),
                "excludes": list(self.files.excludes),
                "kind": self.files.kind.value,
            },
            "maxResults": self.max_results,
        }


class Match(BaseModel):
    """A document a scan identified as containing candidate content."""

    document_uri: str = Field(alias="documentURI", description="URI of the matched document")
    preview: str = Field(default="", description="Preview text of the match")

    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Documents and ranges
# =============================================================================


class Position(BaseModel):
    """Zero-based line/character position in a document."""

    model_config = ConfigDict(frozen=True)

    line: int = Field(ge=0)
    character: int = Field(ge=0)

    def sort_key(self) -> tuple[int, int]:
        return (self.line, self.character)


class Range(BaseModel):
    """Half-open span between two positions."""

    model_config = ConfigDict(frozen=True)

    start: Position
    end: Position

    @classmethod
    def from_coords(cls, start_line: int, start_char: int, end_line: int, end_char: int) -> "Range":
        return cls(
            start=Position(line=start_line, character=start_char),
            end=Position(line=end_line, character=end_char),
        )


class Document(BaseModel):
    """Full text of a document at the time it was opened."""

    uri: str
    text: str

    def position_at(self, offset: int) -> Position:
        """Convert a character offset into a line/character position."""
        offset = max(0, min(offset, len(self.text)))
        before = self.text[:offset]
        line = before.count("\n")
        character = offset - (before.rfind("\n") + 1)
        return Position(line=line, character=character)

    def offset_at(self, position: Position) -> int:
        """Convert a position into a character offset, clamped to the text."""
        lines = self.text.split("\n")
        if position.line >= len(lines):
            return len(self.text)
        offset = sum(len(line) + 1 for line in lines[: position.line])
        return offset + min(position.character, len(lines[position.line]))


# =============================================================================
# Findings
# =============================================================================


class DependencyFinding(BaseModel):
    """A dependency declared in a package manifest."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["npm_dependency"] = "npm_dependency"
    name: str = Field(description="Package name as declared in the manifest")
    range: Range = Field(description="Range of the quoted package name")


class VersionDirectiveFinding(BaseModel):
    """A CI configuration directive that selects a language version."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["travis_go"] = "travis_go"
    directive: str = Field(description="Matched directive text, e.g. 'go:'")
    range: Range = Field(description="Range of the directive")

    @property
    def name(self) -> str:
        return self.directive


Finding = Annotated[
    Union[DependencyFinding, VersionDirectiveFinding],
    Field(discriminator="kind"),
]


# =============================================================================
# Diagnostics and edits
# =============================================================================


class Diagnostic(BaseModel):
    """A reported issue anchored to a document range."""

    document_uri: str
    range: Range
    message: str
    severity: Severity
    identity: str = Field(description="Opaque token decodable back to the originating finding")


class DiagnosticEntry(BaseModel):
    """All diagnostics for one document, ordered by range start."""

    document_uri: str
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class TextEdit(BaseModel):
    """Replace a range of a document. A null replacement deletes the range."""

    document_uri: str
    range: Range
    replacement: Optional[str] = None


class FixEdit(BaseModel):
    """Ordered list of text edits, possibly spanning several documents."""

    edits: list[TextEdit] = Field(default_factory=list)

    def delete(self, document_uri: str, range: Range) -> None:
        self.edits.append(TextEdit(document_uri=document_uri, range=range, replacement=None))

    def insert(self, document_uri: str, position: Position, text: str) -> None:
        self.edits.append(
            TextEdit(
                document_uri=document_uri,
                range=Range(start=position, end=position),
                replacement=text,
            )
        )

    def merge(self, other: "FixEdit") -> None:
        self.edits.extend(other.edits)

    def document_uris(self) -> list[str]:
        """Distinct document URIs touched, in first-edit order."""
        seen: dict[str, None] = {}
        for edit in self.edits:
            seen.setdefault(edit.document_uri, None)
        return list(seen)

    def is_empty(self) -> bool:
        return not self.edits


class Command(BaseModel):
    """A host command invocation."""

    title: str = ""
    command: str
    arguments: list = Field(default_factory=list)


class CodeAction(BaseModel):
    """An action offered for a diagnostic: an edit, a command, or both."""

    title: str
    edit: Optional[FixEdit] = None
    command: Optional[Command] = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)


# =============================================================================
# Policy
# =============================================================================


RULES_NAMESPACE = "check.rules"


class PolicyConfig(BaseModel):
    """Validated snapshot of the policy namespace: kind -> name -> decision."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rules: dict[FindingKind, dict[str, PolicyDecision]] = Field(
        default_factory=dict, alias=RULES_NAMESPACE
    )

    def decide(self, kind: FindingKind, name: str) -> PolicyDecision:
        return self.rules.get(kind, {}).get(name, PolicyDecision.unreviewed)


# =============================================================================
# Status
# =============================================================================


class StatusCompletion(str, Enum):
    in_progress = "in_progress"
    completed = "completed"


class StatusResult(str, Enum):
    success = "success"
    failure = "failure"


class NotificationType(str, Enum):
    error = "error"
    warning = "warning"


class StatusState(BaseModel):
    completion: StatusCompletion
    result: Optional[StatusResult] = None
    message: str = ""


class Notification(BaseModel):
    title: str
    type: NotificationType


class Status(BaseModel):
    """Health summary of the current diagnostic set."""

    title: str
    description: str = ""
    state: StatusState
    notifications: list[Notification] = Field(default_factory=list)


# =============================================================================
# API requests and responses
# =============================================================================


class ScanResponse(BaseModel):
    """Result of running one epoch on request."""

    epoch: int = Field(description="Epoch number that produced this result")
    published: bool = Field(description="False if a newer epoch superseded this one")
    diagnostics: list[DiagnosticEntry] = Field(default_factory=list)
    status: Status


class CodeActionRequest(BaseModel):
    document_uri: str = Field(description="Document the actions are requested for")
    diagnostics: Optional[list[Diagnostic]] = Field(
        default=None, description="Diagnostics in scope (defaults to the registry's for the document)"
    )


class LocalFixRequest(BaseModel):
    diagnostic: Diagnostic


class BatchFixRequest(BaseModel):
    kind: FindingKind


class BatchFixResponse(BaseModel):
    title: str = Field(description="Presentation title, e.g. 'Fix 3 occurrences'")
    edit: FixEdit
    affected_documents: int = Field(description="Documents holding diagnostics of the kind")


class PolicyUpdateRequest(BaseModel):
    kind: FindingKind
    name: str = Field(description="Finding name, e.g. the dependency name")
    decision: PolicyDecision
    scope: PolicyScope = Field(default=PolicyScope.repository)


class PolicyUpdateResponse(BaseModel):
    outcome: PolicyUpdateOutcome
