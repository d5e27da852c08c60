"""Pipeline controller: re-run scan -> synthesize -> publish on every trigger."""

import asyncio
import logging
from typing import Optional

from .checks import Check, default_checks
from .config import Settings
from .fixes import FixGenerator
from .models import DiagnosticEntry, FindingKind
from .policy import InMemoryConfigBackend, JsonFileConfigBackend, PolicyStore
from .registry import DiagnosticRegistry
from .scanner import CorpusScanner, DocumentSource, LocalCorpusBackend, SearchBackend
from .status import StatusReporter
from .synthesizer import synthesize

logger = logging.getLogger(__name__)


class PipelineController:
    """Owns the registry and schedules scan epochs.

    Each trigger starts a new epoch numbered by a monotonic counter. Older
    epochs are never cancelled; they run to completion and their result is
    discarded at publish time if a newer epoch has been triggered since.
    """

    def __init__(
        self,
        scanner: CorpusScanner,
        documents: DocumentSource,
        policy: PolicyStore,
        settings: Settings,
        checks: Optional[dict[FindingKind, Check]] = None,
        registry: Optional[DiagnosticRegistry] = None,
    ):
        self.scanner = scanner
        self.documents = documents
        self.policy = policy
        self.settings = settings
        self.checks = checks if checks is not None else default_checks()
        self.registry = registry or DiagnosticRegistry()
        self.fixes = FixGenerator(self.registry, documents, policy, self.checks, settings)
        self.status = StatusReporter(self)

        self.workspace_roots: list[str] = []
        self.last_error: Optional[Exception] = None
        self.closed = False

        self._epoch = 0
        self._latest: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._policy_watch: Optional[asyncio.Task] = None

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def scanning(self) -> bool:
        return self._latest is not None and not self._latest.done()

    async def start(self) -> None:
        """Load policy and start watching it; the first snapshot triggers the first epoch."""
        await self.policy.load()
        self._policy_watch = asyncio.create_task(self._watch_policy())

    async def _watch_policy(self) -> None:
        async for _ in self.policy.observe():
            if self.closed:
                break
            self.trigger("configuration change")

    def set_workspace_roots(self, roots: list[str]) -> asyncio.Task:
        """Record the open workspace roots and rescan.

        Non-empty roots mean a comparison view is open; those epochs publish an
        empty set without scanning.
        """
        self.workspace_roots = list(roots)
        return self.trigger("workspace roots changed")

    def trigger(self, reason: str = "manual") -> asyncio.Task:
        """Start a new epoch and return its task."""
        if self.closed:
            raise RuntimeError("PipelineController is closed")

        self._epoch += 1
        epoch = self._epoch
        logger.info(f"Starting epoch {epoch} ({reason})")

        task = asyncio.create_task(self._run_epoch(epoch))
        self._latest = task
        self._tasks.add(task)
        task.add_done_callback(self._epoch_done)
        self.status.notify()
        return task

    def _epoch_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self.status.notify()
        if not task.cancelled():
            # Mark the exception retrieved; callers that care await the task.
            task.exception()

    async def _run_epoch(self, epoch: int) -> bool:
        try:
            if self.workspace_roots:
                batch: list[DiagnosticEntry] = []
            else:
                batch = await synthesize(
                    self.scanner, self.documents, self.policy.snapshot, self.checks, self.settings
                )
        except Exception as e:
            logger.error(f"Epoch {epoch} failed: {e}")
            if epoch == self._epoch:
                self.last_error = e
            raise

        if epoch != self._epoch or self.closed:
            logger.info(f"Discarding stale epoch {epoch} (current epoch {self._epoch})")
            return False

        self.last_error = None
        self.registry.publish(batch)
        return True

    async def run_epoch(self, reason: str = "manual") -> bool:
        """
        Trigger an epoch and wait for it.

        Returns:
            True if its batch was published, False if a newer epoch superseded it

        Raises:
            CheckSearchError: If the scan failed
        """
        return await self.trigger(reason)

    async def wait_idle(self) -> None:
        """Wait until the latest epoch (including any triggered meanwhile) has finished."""
        while self._latest is not None and not self._latest.done():
            await asyncio.wait([self._latest])

    async def close(self) -> None:
        """Stop watching policy and tear down the registry."""
        if self.closed:
            return
        self.closed = True
        self.policy.close()
        if self._policy_watch is not None:
            self._policy_watch.cancel()
            try:
                await self._policy_watch
            except asyncio.CancelledError:
                pass
        self.registry.clear()
        self.registry.close()


def create_controller(settings: Settings, backend: SearchBackend | None = None) -> PipelineController:
    """
    Build a controller from settings.

    Args:
        settings: Runtime settings
        backend: Search backend that is also a DocumentSource; defaults to a
                 LocalCorpusBackend over settings.corpus_path

    Raises:
        ValueError: If neither backend nor corpus_path is given
    """
    if backend is None:
        if not settings.corpus_path:
            raise ValueError("A search backend or CHECK_SEARCH_CORPUS_PATH is required")
        backend = LocalCorpusBackend(settings.corpus_path)

    if settings.policy_file:
        config_backend = JsonFileConfigBackend(settings.policy_file)
    else:
        config_backend = InMemoryConfigBackend()

    return PipelineController(
        scanner=CorpusScanner(backend, cache_size=settings.cache_size),
        documents=backend,
        policy=PolicyStore(config_backend),
        settings=settings,
    )
