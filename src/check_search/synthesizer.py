"""Turn scan matches into policy-classified diagnostics."""

import asyncio
import logging

from .checks import Check
from .config import Settings
from .identity import encode_identity
from .models import (
    Diagnostic,
    DiagnosticEntry,
    Document,
    FindingKind,
    PolicyConfig,
    PolicyDecision,
    Severity,
)
from .scanner import CorpusScanner, DocumentSource

logger = logging.getLogger(__name__)

SEVERITY_BY_DECISION = {
    PolicyDecision.forbidden: Severity.error,
    PolicyDecision.unreviewed: Severity.warning,
}

STATUS_LABELS = {
    PolicyDecision.forbidden: "Forbidden",
    PolicyDecision.unreviewed: "Unreviewed",
}


def build_diagnostic(check: Check, document_uri: str, finding, decision: PolicyDecision) -> Diagnostic:
    """Diagnostic for a finding whose decision is not allow."""
    return Diagnostic(
        document_uri=document_uri,
        range=finding.range,
        message=f"{STATUS_LABELS[decision]} {check.label} '{finding.name}'",
        severity=SEVERITY_BY_DECISION[decision],
        identity=encode_identity(finding),
    )


def synthesize_document(check: Check, document: Document, policy: PolicyConfig) -> list[Diagnostic]:
    """
    Parse one document and classify its findings.

    A document that fails to parse contributes no diagnostics; the failure is
    logged and does not affect other documents.

    Args:
        check: Check that claimed the document
        document: Document text
        policy: Policy snapshot for this epoch

    Returns:
        Diagnostics sorted by range start; allowed findings are omitted
    """
    try:
        findings = check.parse(document.text)
    except (ValueError, TypeError) as e:
        logger.error(f"Error parsing {document.uri} for {check.kind.value}: {e}")
        return []

    diagnostics = []
    for finding in findings:
        decision = policy.decide(check.kind, finding.name)
        if decision == PolicyDecision.allowed:
            continue
        diagnostics.append(build_diagnostic(check, document.uri, finding, decision))

    diagnostics.sort(key=lambda d: d.range.start.sort_key())
    return diagnostics


async def _scan_uris(scanner: CorpusScanner, check: Check, settings: Settings) -> list[str]:
    uris: dict[str, None] = {}
    async for match in scanner.scan(check.query(settings)):
        uris.setdefault(match.document_uri, None)
    logger.info(f"{check.kind.value}: {len(uris)} candidate documents")
    return list(uris)


async def synthesize(
    scanner: CorpusScanner,
    documents: DocumentSource,
    policy: PolicyConfig,
    checks: dict[FindingKind, Check],
    settings: Settings,
) -> list[DiagnosticEntry]:
    """
    Run one synthesis pass: scan for every check, open each matched document
    and classify its findings.

    Scans and document fetches are awaited concurrently; documents are parsed
    in worker threads so one slow parse does not hold up the rest.

    Returns:
        One entry per document with at least one diagnostic, in match order

    Raises:
        ScanError: If a scan or document fetch fails
    """
    check_list = list(checks.values())
    uri_lists = await asyncio.gather(*[_scan_uris(scanner, c, settings) for c in check_list])

    jobs = [(check, uri) for check, uris in zip(check_list, uri_lists) for uri in uris]
    docs = await asyncio.gather(*[documents.open_document(uri) for _, uri in jobs])

    results = await asyncio.gather(
        *[
            asyncio.to_thread(synthesize_document, check, doc, policy)
            for (check, _), doc in zip(jobs, docs)
        ]
    )

    by_document: dict[str, list[Diagnostic]] = {}
    for (_, uri), diagnostics in zip(jobs, results):
        if diagnostics:
            by_document.setdefault(uri, []).extend(diagnostics)

    entries = []
    for uri, diagnostics in by_document.items():
        diagnostics.sort(key=lambda d: d.range.start.sort_key())
        entries.append(DiagnosticEntry(document_uri=uri, diagnostics=diagnostics))
    return entries
