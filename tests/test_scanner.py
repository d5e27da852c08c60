"""Tests for corpus scanning."""

import httpx
import pytest

from check_search.checks import NpmDependencyCheck, TravisGoCheck
from check_search.config import Settings
from check_search.errors import ScanError
from check_search.models import FileFilter, PatternKind, PatternSpec, RepoFilter, ScanQuery
from check_search.scanner import CorpusScanner, HttpSearchBackend, LocalCorpusBackend

from conftest import PACKAGE_JSON, TRAVIS_YML, FailingSearchBackend, FakeSearchBackend


def _query(pattern: str = "x", max_results: int = 100) -> ScanQuery:
    return ScanQuery(pattern=PatternSpec(pattern=pattern), max_results=max_results)


class TestLocalCorpusBackend:
    """Test searching a directory of repositories."""

    @pytest.mark.asyncio
    async def test_finds_package_json_in_included_repos(self, corpus_dir, write_file):
        web = write_file("web", "package.json", PACKAGE_JSON)
        nested = write_file("mono", "packages/ui/package.json", PACKAGE_JSON)
        write_file("hackathon-2019", "package.json", PACKAGE_JSON)
        write_file("web", "node_modules/left-pad/package.json", PACKAGE_JSON)
        write_file("web", "src/index.js", "dependencies\"")

        scanner = CorpusScanner(LocalCorpusBackend(corpus_dir))
        matches = await scanner.scan_all(NpmDependencyCheck().query(Settings()))

        uris = sorted(m.document_uri for m in matches)
        assert uris == sorted([web.resolve().as_uri(), nested.resolve().as_uri()])
        assert all('"dependencies"' in m.preview for m in matches)

    @pytest.mark.asyncio
    async def test_empty_pattern_matches_every_file(self, corpus_dir, write_file):
        write_file("svc", ".travis.yml", TRAVIS_YML)
        write_file("svc", "README.md", "hello")

        scanner = CorpusScanner(LocalCorpusBackend(corpus_dir))
        matches = await scanner.scan_all(TravisGoCheck().query(Settings()))

        assert len(matches) == 1
        assert matches[0].document_uri.endswith("/svc/.travis.yml")

    @pytest.mark.asyncio
    async def test_literal_pattern_and_file_excludes(self, corpus_dir, write_file):
        write_file("svc", "a.txt", "price is $5 (approx)")
        write_file("svc", "b.txt", "price is $5 (approx)")

        query = ScanQuery(
            pattern=PatternSpec(pattern="$5 (approx)", kind=PatternKind.literal),
            files=FileFilter(excludes=(r"^b\.txt$",)),
        )
        matches = await CorpusScanner(LocalCorpusBackend(corpus_dir)).scan_all(query)
        assert [m.document_uri.rsplit("/", 1)[-1] for m in matches] == ["a.txt"]

    @pytest.mark.asyncio
    async def test_repo_excludes(self, corpus_dir, write_file):
        write_file("keep", "f.txt", "needle")
        write_file("drop", "f.txt", "needle")

        query = ScanQuery(pattern=PatternSpec(pattern="needle"), repositories=RepoFilter(excludes=("^drop$",)))
        matches = await CorpusScanner(LocalCorpusBackend(corpus_dir)).scan_all(query)
        assert len(matches) == 1
        assert "/keep/" in matches[0].document_uri

    @pytest.mark.asyncio
    async def test_open_document(self, corpus_dir, write_file):
        path = write_file("web", "package.json", PACKAGE_JSON)
        backend = LocalCorpusBackend(corpus_dir)

        doc = await backend.open_document(path.resolve().as_uri())
        assert doc.text == PACKAGE_JSON

    @pytest.mark.asyncio
    async def test_open_document_outside_corpus(self, corpus_dir):
        backend = LocalCorpusBackend(corpus_dir)
        with pytest.raises(ScanError):
            await backend.open_document("file:///definitely/not/in/corpus.json")

    @pytest.mark.asyncio
    async def test_open_document_rejects_other_schemes(self, corpus_dir):
        with pytest.raises(ScanError):
            await LocalCorpusBackend(corpus_dir).open_document("https://example.com/package.json")

    @pytest.mark.asyncio
    async def test_missing_corpus_root(self, corpus_dir):
        scanner = CorpusScanner(LocalCorpusBackend(corpus_dir / "missing"))
        with pytest.raises(ScanError):
            await scanner.scan_all(_query())


class TestCorpusScanner:
    """Test truncation, memoization and failure handling."""

    @pytest.mark.asyncio
    async def test_max_results_truncates(self):
        backend = FakeSearchBackend([f"mem://r/{i}" for i in range(5)])
        matches = await CorpusScanner(backend).scan_all(_query(max_results=2))
        assert [m.document_uri for m in matches] == ["mem://r/0", "mem://r/1"]

    @pytest.mark.asyncio
    async def test_zero_max_results(self):
        backend = FakeSearchBackend(["mem://r/0"])
        assert await CorpusScanner(backend).scan_all(_query(max_results=0)) == []
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_identical_queries_are_memoized(self):
        backend = FakeSearchBackend(["mem://r/0", "mem://r/1"])
        scanner = CorpusScanner(backend)

        first = await scanner.scan_all(_query("dep"))
        second = await scanner.scan_all(_query("dep"))

        assert first == second
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_different_queries_are_not_shared(self):
        backend = FakeSearchBackend(["mem://r/0"])
        scanner = CorpusScanner(backend)
        await scanner.scan_all(_query("a"))
        await scanner.scan_all(_query("b"))
        assert backend.calls == 2

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        backend = FakeSearchBackend(["mem://r/0"])
        scanner = CorpusScanner(backend, cache_size=1)

        await scanner.scan_all(_query("a"))
        await scanner.scan_all(_query("b"))
        await scanner.scan_all(_query("a"))

        assert backend.calls == 3

    @pytest.mark.asyncio
    async def test_clear_cache(self):
        backend = FakeSearchBackend(["mem://r/0"])
        scanner = CorpusScanner(backend)
        await scanner.scan_all(_query())
        scanner.clear_cache()
        await scanner.scan_all(_query())
        assert backend.calls == 2

    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_not_cached(self):
        backend = FailingSearchBackend()
        scanner = CorpusScanner(backend)

        with pytest.raises(ScanError):
            await scanner.scan_all(_query())
        with pytest.raises(ScanError):
            await scanner.scan_all(_query())
        assert backend.calls == 2


def test_scan_query_request_shape():
    query = NpmDependencyCheck().query(Settings(repo_include="^github\\.com/acme/", max_results=10))
    assert query.to_request() == {
        "pattern": '[Dd]ependencies"',
        "kind": "regexp",
        "repositories": {"includes": ["^github\\.com/acme/"], "excludes": ["hackathon"], "kind": "regexp"},
        "files": {"includes": [r"(^|/)package\.json$"], "excludes": [], "kind": "regexp"},
        "maxResults": 10,
    }


def _search_service(payload, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/documents":
            return httpx.Response(200, json={"uri": request.url.params["uri"], "text": PACKAGE_JSON})
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class TestHttpSearchBackend:
    """Test the remote search client."""

    @pytest.mark.asyncio
    async def test_search_and_open(self):
        transport = _search_service({"results": [{"documentURI": "mem://web/package.json", "preview": "x"}]})
        async with HttpSearchBackend("http://search", transport=transport) as backend:
            matches = await CorpusScanner(backend).scan_all(_query())
            doc = await backend.open_document("mem://web/package.json")

        assert [m.document_uri for m in matches] == ["mem://web/package.json"]
        assert doc.text == PACKAGE_JSON

    @pytest.mark.asyncio
    async def test_malformed_result_raises_scan_error(self):
        transport = _search_service([{"preview": "no uri"}])
        async with HttpSearchBackend("http://search", transport=transport) as backend:
            with pytest.raises(ScanError, match="Malformed search response"):
                await CorpusScanner(backend).scan_all(_query())

    @pytest.mark.asyncio
    async def test_non_list_results_raise_scan_error(self):
        transport = _search_service({"results": 42})
        async with HttpSearchBackend("http://search", transport=transport) as backend:
            with pytest.raises(ScanError):
                await CorpusScanner(backend).scan_all(_query())

    @pytest.mark.asyncio
    async def test_http_error_raises_scan_error(self):
        transport = _search_service({"error": "boom"}, status_code=502)
        async with HttpSearchBackend("http://search", transport=transport) as backend:
            with pytest.raises(ScanError, match="Search request failed"):
                await CorpusScanner(backend).scan_all(_query())

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await HttpSearchBackend("http://search").open_document("mem://x")
