"""Diagnostic registry: the latest full diagnostic set, keyed by document."""

import logging
from types import MappingProxyType
from typing import Callable, Mapping

from .identity import identity_kind
from .models import Diagnostic, DiagnosticEntry, FindingKind

logger = logging.getLogger(__name__)

DiagnosticSet = Mapping[str, tuple[Diagnostic, ...]]
Subscriber = Callable[[DiagnosticSet], None]

_EMPTY: DiagnosticSet = MappingProxyType({})


class DiagnosticRegistry:
    """Holds exactly one epoch's diagnostics.

    The current set is an immutable mapping swapped in by a single assignment,
    so readers never see a partially built set.
    """

    def __init__(self, name: str = "check-search"):
        self.name = name
        self._current: DiagnosticSet = _EMPTY
        self._subscribers: list[Subscriber] = []

    def publish(self, batch: list[DiagnosticEntry]) -> None:
        """Replace the whole set with batch and notify every subscriber."""
        new_set: dict[str, tuple[Diagnostic, ...]] = {}
        for entry in batch:
            new_set[entry.document_uri] = tuple(entry.diagnostics)
        self._current = MappingProxyType(new_set)
        logger.info(
            f"{self.name}: published {sum(len(d) for d in new_set.values())} diagnostics "
            f"in {len(new_set)} documents"
        )
        self._notify()

    # Publish-sink interface
    def set(self, entries: list[DiagnosticEntry]) -> None:
        self.publish(entries)

    def clear(self) -> None:
        self.publish([])

    def _notify(self) -> None:
        current = self._current
        for subscriber in list(self._subscribers):
            subscriber(current)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a callback for every publish. Returns an unsubscribe function."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def current(self) -> DiagnosticSet:
        return self._current

    def query(self, document_uri: str) -> list[Diagnostic]:
        return list(self._current.get(document_uri, ()))

    def entries_of_kind(self, kind: FindingKind) -> list[DiagnosticEntry]:
        """Documents holding at least one diagnostic of kind, with only those diagnostics."""
        entries = []
        for uri, diagnostics in self._current.items():
            matching = [d for d in diagnostics if identity_kind(d.identity) == kind]
            if matching:
                entries.append(DiagnosticEntry(document_uri=uri, diagnostics=matching))
        return entries

    def to_entries(self) -> list[DiagnosticEntry]:
        return [
            DiagnosticEntry(document_uri=uri, diagnostics=list(diagnostics))
            for uri, diagnostics in self._current.items()
        ]

    def close(self) -> None:
        """Tear down: drop the current set and every subscriber."""
        self._current = _EMPTY
        self._subscribers.clear()
