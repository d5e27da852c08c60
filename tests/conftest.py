"""Shared fixtures for check-search tests."""

import tempfile
from pathlib import Path

import pytest

from check_search.models import Document, Match
from check_search.scanner import DocumentSource, SearchBackend

PACKAGE_JSON = """{
  "name": "web",
  "dependencies": {
    "a": "1",
    "b": "2"
  }
}
"""

TRAVIS_YML = """language: go
go:
  - "1.10.x"
script: make test
"""


class FakeSearchBackend(SearchBackend):
    """Returns a fixed list of matches and counts how often it is asked."""

    def __init__(self, uris: list[str]):
        self.uris = uris
        self.calls = 0

    async def search(self, query):
        self.calls += 1
        for uri in self.uris:
            yield Match(document_uri=uri, preview="")


class FailingSearchBackend(SearchBackend):
    def __init__(self):
        self.calls = 0

    async def search(self, query):
        self.calls += 1
        raise OSError("search backend unavailable")
        yield  # pragma: no cover


class DictDocuments(DocumentSource):
    """Documents served from an in-memory dict; edits to the dict are seen on next open."""

    def __init__(self, texts: dict[str, str]):
        self.texts = texts

    async def open_document(self, uri: str) -> Document:
        return Document(uri=uri, text=self.texts[uri])


@pytest.fixture
def corpus_dir():
    """Create a temporary corpus directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_file(corpus_dir):
    """Write a file into a repository of the temporary corpus and return its path."""

    def _write(repo: str, relative: str, text: str) -> Path:
        path = corpus_dir / repo / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    return _write
