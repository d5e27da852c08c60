"""Status reporting: summarize the diagnostic registry as pending/success/failure."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from .checks import Check, default_checks
from .identity import decode_identity
from .models import (
    FindingKind,
    Notification,
    NotificationType,
    PolicyConfig,
    PolicyDecision,
    Status,
    StatusCompletion,
    StatusResult,
    StatusState,
)
from .registry import DiagnosticSet

logger = logging.getLogger(__name__)

STATUS_TITLE = "Dependency and CI policy"
STATUS_DESCRIPTION = "Monitors and enforces rules about npm dependencies and CI configuration."


def compute_status(
    diagnostics: Optional[DiagnosticSet],
    policy: PolicyConfig,
    checks: Optional[dict[FindingKind, Check]] = None,
) -> Status:
    """
    Summarize a diagnostic set.

    Args:
        diagnostics: Current set, or None while a scan is in flight
        policy: Policy snapshot used to classify each finding
        checks: Checks whose labels name each kind (defaults to the built-in checks)

    Returns:
        in_progress while scanning; success for an empty set; otherwise failure
        with one notification per offending finding, sorted by name
    """
    if diagnostics is None:
        return Status(
            title=STATUS_TITLE,
            description=STATUS_DESCRIPTION,
            state=StatusState(completion=StatusCompletion.in_progress, message="Scanning..."),
        )

    total = sum(len(d) for d in diagnostics.values())
    if total == 0:
        return Status(
            title=STATUS_TITLE,
            description=STATUS_DESCRIPTION,
            state=StatusState(
                completion=StatusCompletion.completed,
                result=StatusResult.success,
                message="All in-use findings are approved",
            ),
        )

    labels = {kind: check.label for kind, check in (checks or default_checks()).items()}
    offending: dict[tuple[str, FindingKind], PolicyDecision] = {}
    for diags in diagnostics.values():
        for diag in diags:
            finding = decode_identity(diag.identity)
            kind = FindingKind(finding.kind)
            decision = policy.decide(kind, finding.name)
            if decision != PolicyDecision.allowed:
                offending[(finding.name, kind)] = decision

    notifications = []
    for (name, kind), decision in sorted(offending.items(), key=lambda item: (item[0][0], item[0][1].value)):
        label = labels.get(kind, kind.value)
        if decision == PolicyDecision.forbidden:
            notifications.append(
                Notification(title=f"Forbidden {label} in use: {name}", type=NotificationType.error)
            )
        else:
            notifications.append(
                Notification(title=f"Unreviewed {label} in use: {name}", type=NotificationType.warning)
            )

    noun = "finding" if total == 1 else "findings"
    return Status(
        title=STATUS_TITLE,
        description=STATUS_DESCRIPTION,
        state=StatusState(
            completion=StatusCompletion.completed,
            result=StatusResult.failure,
            message=f"{total} unapproved {noun} found",
        ),
        notifications=notifications,
    )


class StatusReporter:
    """Produces status snapshots from a pipeline controller's registry and policy."""

    def __init__(self, controller):
        self.controller = controller
        self._watchers: set[asyncio.Event] = set()

    def current(self) -> Status:
        diagnostics = None if self.controller.scanning else self.controller.registry.current()
        return compute_status(diagnostics, self.controller.policy.snapshot, self.controller.checks)

    def notify(self) -> None:
        """Wake every status stream; called when an epoch starts or finishes."""
        for event in list(self._watchers):
            event.set()

    async def provide_status(self, scope: str | None = None) -> AsyncIterator[Status]:
        """Yield the current status, then each new one as epochs start, publish or fail.

        Consecutive identical statuses are yielded once. The scope is accepted
        for interface compatibility; every scope sees the whole corpus.
        """
        changed = asyncio.Event()
        self._watchers.add(changed)
        unsubscribe = self.controller.registry.subscribe(lambda _: changed.set())
        try:
            last = self.current()
            yield last
            while not self.controller.closed:
                await changed.wait()
                changed.clear()
                if self.controller.closed:
                    break
                status = self.current()
                if status != last:
                    last = status
                    yield status
        finally:
            unsubscribe()
            self._watchers.discard(changed)
