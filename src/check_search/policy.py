"""Policy store: live allow/forbid/unreviewed rules for findings."""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator

from pydantic import ValidationError

from .errors import ConfigError
from .models import (
    RULES_NAMESPACE,
    FindingKind,
    PolicyConfig,
    PolicyDecision,
    PolicyScope,
    PolicyUpdateOutcome,
)

logger = logging.getLogger(__name__)


def merge_patch(target: dict, path: tuple[str, ...], value: Any) -> dict:
    """
    Return a copy of target with value set at the nested key path.

    Intermediate objects are created as needed; sibling keys are preserved.
    """
    result = copy.deepcopy(target)
    node = result
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value
    return result


class ConfigBackend(ABC):
    """External configuration storage."""

    @abstractmethod
    async def read(self) -> dict:
        """Read the full configuration."""

    @abstractmethod
    async def patch(self, path: tuple[str, ...], value: Any) -> None:
        """Merge value into the configuration at path."""


class InMemoryConfigBackend(ConfigBackend):
    def __init__(self, data: dict | None = None):
        self.data = copy.deepcopy(data) if data else {}

    async def read(self) -> dict:
        return copy.deepcopy(self.data)

    async def patch(self, path: tuple[str, ...], value: Any) -> None:
        self.data = merge_patch(self.data, path, value)


class JsonFileConfigBackend(ConfigBackend):
    """Configuration kept in a JSON file. A missing file reads as empty."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_sync(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to read policy file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Policy file {self.path} must contain a JSON object")
        return data

    def _patch_sync(self, path: tuple[str, ...], value: Any) -> None:
        data = merge_patch(self._read_sync(), path, value)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    async def read(self) -> dict:
        return await asyncio.to_thread(self._read_sync)

    async def patch(self, path: tuple[str, ...], value: Any) -> None:
        await asyncio.to_thread(self._patch_sync, path, value)


def parse_policy(raw: dict) -> PolicyConfig:
    """
    Validate the policy namespace of a raw configuration object.

    Raises:
        ConfigError: If a kind or decision is not recognized
    """
    namespace = raw.get(RULES_NAMESPACE) or {}
    try:
        return PolicyConfig.model_validate({RULES_NAMESPACE: namespace})
    except ValidationError as e:
        raise ConfigError(f"Invalid {RULES_NAMESPACE} configuration: {e}") from e


class PolicyStore:
    """Holds the latest PolicyConfig snapshot and writes decisions back to storage.

    Writes are fire-and-forget merge patches; a decision becomes visible to
    decide() only after the write lands and the configuration is reloaded.
    """

    def __init__(self, backend: ConfigBackend | None = None):
        self.backend = backend or InMemoryConfigBackend()
        self._snapshot = PolicyConfig()
        self._version = 0
        self._watchers: set[asyncio.Event] = set()
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    @property
    def snapshot(self) -> PolicyConfig:
        return self._snapshot

    async def load(self) -> PolicyConfig:
        """Read the policy namespace from the backend and publish it."""
        config = parse_policy(await self.backend.read())
        self._publish(config)
        return config

    def _publish(self, config: PolicyConfig) -> None:
        if config == self._snapshot and self._version > 0:
            return
        self._snapshot = config
        self._version += 1
        for event in list(self._watchers):
            event.set()

    async def observe(self) -> AsyncIterator[PolicyConfig]:
        """Yield the current snapshot, then each newer one.

        Intermediate snapshots are skipped when the observer falls behind.
        """
        event = asyncio.Event()
        self._watchers.add(event)
        try:
            seen = self._version
            yield self._snapshot
            while not self._closed:
                await event.wait()
                event.clear()
                if self._closed:
                    break
                if self._version != seen:
                    seen = self._version
                    yield self._snapshot
        finally:
            self._watchers.discard(event)

    def decide(self, kind: FindingKind, name: str) -> PolicyDecision:
        return self._snapshot.decide(kind, name)

    def update(
        self,
        kind: FindingKind,
        name: str,
        decision: PolicyDecision,
        scope: PolicyScope = PolicyScope.repository,
    ) -> PolicyUpdateOutcome:
        """
        Record a decision for a finding.

        Args:
            kind: Finding kind
            name: Finding name, e.g. the dependency name
            decision: Decision to store
            scope: Only repository scope is supported

        Returns:
            accepted once the write is scheduled; not_implemented for global scope
        """
        if scope == PolicyScope.global_:
            logger.warning(f"Global policy scope is not implemented ({kind.value} '{name}')")
            return PolicyUpdateOutcome.not_implemented

        task = asyncio.create_task(self._write(kind, name, decision))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return PolicyUpdateOutcome.accepted

    async def _write(self, kind: FindingKind, name: str, decision: PolicyDecision) -> None:
        try:
            await self.backend.patch((RULES_NAMESPACE, kind.value, name), decision.value)
            await self.load()
            logger.info(f"Policy updated: {kind.value} '{name}' -> {decision.value}")
        except Exception as e:
            logger.error(f"Policy update failed for {kind.value} '{name}': {e}")

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def close(self) -> None:
        self._closed = True
        for event in list(self._watchers):
            event.set()
