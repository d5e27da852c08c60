"""Fix generation: local edits, corpus-wide batch edits and policy reclassification."""

import asyncio
import logging

from .checks import Check
from .config import Settings
from .errors import FixError, IdentityError, UnsupportedDiagnosticError
from .identity import decode_identity, identity_kind
from .models import (
    RULES_NAMESPACE,
    CodeAction,
    Command,
    Diagnostic,
    Document,
    FindingKind,
    FixEdit,
    PolicyDecision,
    PolicyScope,
    PolicyUpdateOutcome,
)
from .policy import PolicyStore
from .registry import DiagnosticRegistry
from .scanner import DocumentSource

logger = logging.getLogger(__name__)

UPDATE_CONFIGURATION = "updateConfiguration"


def apply_fix_edit(document: Document, edit: FixEdit) -> str:
    """
    Apply the edits of a FixEdit that target document and return the new text.

    Edits are applied from the end of the document backwards so earlier
    offsets stay valid.
    """
    own = [e for e in edit.edits if e.document_uri == document.uri]
    spans = [
        (document.offset_at(e.range.start), document.offset_at(e.range.end), e.replacement or "")
        for e in own
    ]
    text = document.text
    for start, end, replacement in sorted(spans, key=lambda s: (s[0], s[1]), reverse=True):
        text = text[:start] + replacement + text[end:]
    return text


def update_configuration_command(
    kind: FindingKind,
    name: str,
    decision: PolicyDecision,
    scope: PolicyScope = PolicyScope.repository,
) -> Command:
    """Command that records decision for a finding in the policy namespace."""
    return Command(
        title="",
        command=UPDATE_CONFIGURATION,
        arguments=[[RULES_NAMESPACE, kind.value, name], decision.value, scope.value],
    )


class FixGenerator:
    """Computes remediation edits against the current text of documents."""

    def __init__(
        self,
        registry: DiagnosticRegistry,
        documents: DocumentSource,
        policy: PolicyStore,
        checks: dict[FindingKind, Check],
        settings: Settings,
    ):
        self.registry = registry
        self.documents = documents
        self.policy = policy
        self.checks = checks
        self.settings = settings

    def _resolve(self, diagnostic: Diagnostic):
        try:
            finding = decode_identity(diagnostic.identity)
        except IdentityError as e:
            raise UnsupportedDiagnosticError(str(e)) from e
        check = self.checks.get(FindingKind(finding.kind))
        if check is None:
            raise UnsupportedDiagnosticError(f"No check registered for {finding.kind}")
        return check, finding

    def compute_local_fix(self, diagnostic: Diagnostic, document: Document) -> FixEdit:
        """
        Compute the edit that remediates one diagnostic.

        The finding is re-located in the document's current text; the
        diagnostic's own range is never trusted.

        Raises:
            FindingNotFoundError: If the finding is no longer in the document
            UnsupportedDiagnosticError: If the diagnostic is not one of ours
        """
        check, finding = self._resolve(diagnostic)
        decision = self.policy.decide(check.kind, finding.name)
        return check.compute_fix(document, finding, decision, self.settings)

    async def compute_batch_fix(self, kind: FindingKind) -> tuple[FixEdit, int]:
        """
        Union the local fixes of every document holding a diagnostic of kind.

        A fix that fails for one diagnostic is logged and skipped.

        Returns:
            (aggregate edit, number of documents holding diagnostics of kind)
        """
        entries = self.registry.entries_of_kind(kind)
        docs = await asyncio.gather(
            *[self.documents.open_document(entry.document_uri) for entry in entries]
        )

        edit = FixEdit()
        for entry, document in zip(entries, docs):
            for diagnostic in entry.diagnostics:
                try:
                    edit.merge(self.compute_local_fix(diagnostic, document))
                except FixError as e:
                    logger.warning(f"Skipping fix for {entry.document_uri}: {e}")

        return edit, len(entries)

    def reclassify(
        self,
        diagnostic: Diagnostic,
        decision: PolicyDecision,
        scope: PolicyScope = PolicyScope.repository,
    ) -> PolicyUpdateOutcome:
        """Record a new decision for a diagnostic's finding. No text edit is produced."""
        check, finding = self._resolve(diagnostic)
        return self.policy.update(check.kind, finding.name, decision, scope)

    def execute_command(self, command: Command) -> PolicyUpdateOutcome:
        """
        Run an updateConfiguration command produced by provide_code_actions.

        Raises:
            ValueError: If the command or its arguments are not recognized
        """
        if command.command != UPDATE_CONFIGURATION:
            raise ValueError(f"Unsupported command: {command.command}")
        try:
            (namespace, kind, name), decision, *rest = command.arguments
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed {UPDATE_CONFIGURATION} arguments: {command.arguments}") from e
        if namespace != RULES_NAMESPACE:
            raise ValueError(f"Unsupported configuration namespace: {namespace}")
        scope = PolicyScope(rest[0]) if rest else PolicyScope.repository
        return self.policy.update(FindingKind(kind), name, PolicyDecision(decision), scope)

    async def provide_code_actions(
        self, document: Document, diagnostics: list[Diagnostic]
    ) -> list[CodeAction]:
        """
        Code actions for the first diagnostic of each kind among diagnostics.

        Allowed findings get no actions. Forbidden findings get the kind's
        local fix plus an allow reclassification; unreviewed findings get
        allow and forbid reclassifications, plus the local fix for kinds whose
        fix does not depend on a forbid decision.
        """
        actions: list[CodeAction] = []
        for kind, check in self.checks.items():
            diagnostic = next((d for d in diagnostics if identity_kind(d.identity) == kind), None)
            if diagnostic is None:
                continue
            actions.extend(await self._actions_for(check, document, diagnostic))
        return actions

    async def _actions_for(self, check: Check, document: Document, diagnostic: Diagnostic) -> list[CodeAction]:
        _, finding = self._resolve(diagnostic)
        decision = self.policy.decide(check.kind, finding.name)
        if decision == PolicyDecision.allowed:
            return []

        actions: list[CodeAction] = []
        title = check.fix_title(finding)
        if title:
            try:
                edit = self.compute_local_fix(diagnostic, document)
            except FixError as e:
                logger.warning(f"No local fix for {document.uri}: {e}")
                edit = FixEdit()
            if not edit.is_empty():
                actions.append(CodeAction(title=title, edit=edit, diagnostics=[diagnostic]))

                batch_edit, _ = await self.compute_batch_fix(check.kind)
                count = len(batch_edit.document_uris())
                if count > 1:
                    actions.append(
                        CodeAction(title=f"Fix in all {count} repositories", edit=batch_edit, diagnostics=[diagnostic])
                    )

        reclassifications = [PolicyDecision.allowed]
        if decision == PolicyDecision.unreviewed:
            reclassifications.append(PolicyDecision.forbidden)
        for target in reclassifications:
            verb = "Allow" if target == PolicyDecision.allowed else "Forbid"
            for scope, where in ((PolicyScope.repository, "in this repository"), (PolicyScope.global_, "globally")):
                actions.append(
                    CodeAction(
                        title=f"{verb} {check.noun} {where}",
                        command=update_configuration_command(check.kind, finding.name, target, scope),
                        diagnostics=[diagnostic],
                    )
                )

        reference = check.reference_command(finding)
        if reference is not None:
            actions.append(CodeAction(title=reference.title, command=reference, diagnostics=[diagnostic]))
        return actions
