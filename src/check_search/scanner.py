"""Corpus search: find candidate documents across a set of repositories."""

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import unquote, urlparse

import httpx
from pydantic import ValidationError

from .errors import ScanError
from .models import Document, Match, PatternKind, ScanQuery

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 128

# Directories never searched inside a repository
SKIP_DIRS = {
    "node_modules", ".git", "venv", ".venv", "__pycache__", "dist", "build",
    ".next", ".nuxt", "coverage", "vendor", "target", ".pytest_cache",
    ".mypy_cache", "bower_components", ".tox", ".eggs",
}

# Skip very large files (>500KB are not manifests or CI configs)
MAX_FILE_BYTES = 500_000

PREVIEW_MAX_CHARS = 200


def _compile(pattern: str, kind: PatternKind) -> re.Pattern:
    if kind == PatternKind.literal:
        return re.compile(re.escape(pattern), re.MULTILINE)
    return re.compile(pattern, re.MULTILINE)


def _passes(value: str, includes: tuple[str, ...], excludes: tuple[str, ...], kind: PatternKind) -> bool:
    """Check value against include/exclude pattern sets. No includes means include all."""
    if includes and not any(_compile(p, kind).search(value) for p in includes):
        return False
    return not any(_compile(p, kind).search(value) for p in excludes)


class SearchBackend(ABC):
    """Executes a corpus search."""

    @abstractmethod
    def search(self, query: ScanQuery) -> AsyncIterator[Match]:
        """Yield matches for query. Errors propagate from the iterator."""


class DocumentSource(ABC):
    """Opens documents by URI."""

    @abstractmethod
    async def open_document(self, uri: str) -> Document:
        """Return the full current text of a document."""


class LocalCorpusBackend(SearchBackend, DocumentSource):
    """Searches a directory whose immediate subdirectories are repositories.

    Documents are addressed by ``file://`` URIs and must live under the corpus root.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def repositories(self) -> list[Path]:
        if not self.root.is_dir():
            raise ScanError(f"Corpus root is not a directory: {self.root}")
        return sorted(p for p in self.root.iterdir() if p.is_dir() and p.name not in SKIP_DIRS)

    def _collect(self, query: ScanQuery) -> list[Match]:
        content_re = _compile(query.pattern.pattern, query.pattern.kind)
        repos = query.repositories
        files = query.files
        matches: list[Match] = []

        for repo_path in self.repositories():
            if not _passes(repo_path.name, repos.includes, repos.excludes, repos.kind):
                continue

            for root, dirs, filenames in os.walk(repo_path):
                dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)

                for name in sorted(filenames):
                    path = Path(root) / name
                    relative = path.relative_to(repo_path).as_posix()
                    if not _passes(relative, files.includes, files.excludes, files.kind):
                        continue

                    try:
                        if path.stat().st_size > MAX_FILE_BYTES:
                            continue
                        text = path.read_text(encoding="utf-8", errors="ignore")
                    except OSError:
                        continue

                    found = content_re.search(text)
                    if not found:
                        continue

                    line_start = text.rfind("\n", 0, found.start()) + 1
                    line_end = text.find("\n", found.start())
                    preview = text[line_start:line_end if line_end != -1 else len(text)]
                    matches.append(
                        Match(document_uri=path.as_uri(), preview=preview.strip()[:PREVIEW_MAX_CHARS])
                    )
                    if len(matches) >= query.max_results:
                        return matches

        return matches

    async def search(self, query: ScanQuery) -> AsyncIterator[Match]:
        matches = await asyncio.to_thread(self._collect, query)
        for match in matches:
            yield match

    def _path_for(self, uri: str) -> Path:
        parsed = urlparse(uri)
        if parsed.scheme != "file":
            raise ScanError(f"Unsupported document URI: {uri}")
        path = Path(unquote(parsed.path)).resolve()
        if not path.is_relative_to(self.root):
            raise ScanError(f"Document is outside the corpus root: {uri}")
        return path

    async def open_document(self, uri: str) -> Document:
        path = self._path_for(uri)
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="ignore")
        except OSError as e:
            raise ScanError(f"Failed to open {uri}: {e}") from e
        return Document(uri=uri, text=text)


class HttpSearchBackend(SearchBackend, DocumentSource):
    """Client for a remote search service.

    Must be used as an async context manager, like the other agent clients.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Search service URL. Defaults to CHECK_SEARCH_SEARCH_URL env var
                      or http://localhost:8000.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, e.g. a MockTransport in tests.
        """
        self.base_url = base_url or os.environ.get(
            "CHECK_SEARCH_SEARCH_URL", "http://localhost:8000"
        )
        self.timeout = timeout
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HttpSearchBackend":
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("HttpSearchBackend must be used as an async context manager")
        return self._client

    async def search(self, query: ScanQuery) -> AsyncIterator[Match]:
        client = self._require_client()
        logger.info(f"Searching {self.base_url} for {query.pattern.pattern!r}")
        try:
            response = await client.post("/search", json=query.to_request())
            response.raise_for_status()
            data: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ScanError(f"Search request failed: {e}") from e

        results = data.get("results", []) if isinstance(data, dict) else data
        try:
            matches = [Match.model_validate(item) for item in results]
        except (ValidationError, TypeError) as e:
            raise ScanError(f"Malformed search response: {e}") from e
        for match in matches:
            yield match

    async def open_document(self, uri: str) -> Document:
        client = self._require_client()
        try:
            response = await client.get("/documents", params={"uri": uri})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ScanError(f"Failed to open {uri}: {e}") from e
        return Document(uri=data.get("uri", uri), text=data.get("text", data.get("fullText", "")))


class CorpusScanner:
    """Runs scan queries against a backend, memoizing identical queries.

    The memo cache is a bounded LRU. Entries never go stale on their own; call
    clear_cache() when the corpus is known to have changed.
    """

    def __init__(self, backend: SearchBackend, cache_size: int = DEFAULT_CACHE_SIZE):
        self.backend = backend
        self.cache_size = cache_size
        self._cache: OrderedDict[ScanQuery, tuple[Match, ...]] = OrderedDict()

    async def scan(self, query: ScanQuery) -> AsyncIterator[Match]:
        """
        Yield matches for query, at most query.max_results of them.

        Raises:
            ScanError: If the backend fails. Nothing is cached for a failed scan.
        """
        cached = self._cache.get(query)
        if cached is not None:
            self._cache.move_to_end(query)
            logger.debug(f"Scan cache hit: {query.pattern.pattern!r}")
            for match in cached:
                yield match
            return

        collected: list[Match] = []
        if query.max_results > 0:
            try:
                async for match in self.backend.search(query):
                    collected.append(match)
                    yield match
                    if len(collected) >= query.max_results:
                        break
            except ScanError:
                raise
            except (OSError, httpx.HTTPError, ValidationError) as e:
                raise ScanError(f"Scan failed: {e}") from e

        self._store(query, tuple(collected))

    async def scan_all(self, query: ScanQuery) -> list[Match]:
        """Collect every match of a scan into a list."""
        return [match async for match in self.scan(query)]

    def _store(self, query: ScanQuery, matches: tuple[Match, ...]) -> None:
        self._cache[query] = matches
        self._cache.move_to_end(query)
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug(f"Scan cache eviction: {evicted.pattern.pattern!r}, {len(self._cache)} remaining")

    def clear_cache(self) -> None:
        self._cache.clear()
