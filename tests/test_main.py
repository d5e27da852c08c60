"""Tests for the check-search API."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from check_search.config import Settings
from check_search.errors import ScanError
from check_search.main import app, get_controller
from check_search.models import FindingKind, PolicyDecision
from check_search.pipeline import PipelineController
from check_search.policy import PolicyStore
from check_search.scanner import CorpusScanner, HttpSearchBackend

from conftest import PACKAGE_JSON, TRAVIS_YML, DictDocuments, FailingSearchBackend, FakeSearchBackend

PKG = "mem://web/package.json"
PKG2 = "mem://api/package.json"
TRAVIS = "mem://api/.travis.yml"


@pytest.fixture
def texts():
    return {PKG: PACKAGE_JSON, PKG2: PACKAGE_JSON, TRAVIS: TRAVIS_YML}


@pytest.fixture
def controller(texts):
    """Controller over in-memory documents, injected in place of the app's own."""
    controller = PipelineController(
        scanner=CorpusScanner(FakeSearchBackend(list(texts))),
        documents=DictDocuments(texts),
        policy=PolicyStore(),
        settings=Settings(),
    )
    app.dependency_overrides[get_controller] = lambda: controller
    yield controller
    app.dependency_overrides.clear()


@pytest.fixture
def test_client():
    """Create async test client for FastAPI."""
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _scan(client) -> dict:
    response = await client.post("/scan")
    assert response.status_code == 200
    return response.json()


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, test_client):
        """Test that /health endpoint returns status ok."""
        async with test_client as client:
            response = await client.get("/health")

            assert response.status_code == 200
            assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_no_corpus_configured(self, test_client):
        """Without a controller every pipeline route answers 503."""
        async with test_client as client:
            response = await client.get("/status")

            assert response.status_code == 503
            assert response.json()["detail"] == "No corpus configured"


class TestScanEndpoints:
    """Test /scan, /diagnostics and /status."""

    @pytest.mark.asyncio
    async def test_scan_publishes(self, test_client, controller):
        async with test_client as client:
            data = await _scan(client)

            assert data["epoch"] == 1
            assert data["published"] is True
            uris = [e["document_uri"] for e in data["diagnostics"]]
            assert sorted(uris) == sorted([PKG, PKG2, TRAVIS])
            assert data["status"]["state"]["result"] == "failure"
            assert data["status"]["state"]["message"] == "5 unapproved findings found"

    @pytest.mark.asyncio
    async def test_diagnostics_for_document(self, test_client, controller):
        async with test_client as client:
            await _scan(client)
            response = await client.get("/diagnostics", params={"uri": PKG})

            assert response.status_code == 200
            entries = response.json()
            assert len(entries) == 1
            assert [d["message"] for d in entries[0]["diagnostics"]] == [
                "Unreviewed npm dependency 'a'",
                "Unreviewed npm dependency 'b'",
            ]
            assert entries[0]["diagnostics"][0]["severity"] == "warning"

            response = await client.get("/diagnostics", params={"uri": "mem://nowhere"})
            assert response.json() == []

    @pytest.mark.asyncio
    async def test_status_before_scan(self, test_client, controller):
        async with test_client as client:
            response = await client.get("/status")

            assert response.status_code == 200
            assert response.json()["state"]["result"] == "success"

    @pytest.mark.asyncio
    async def test_scan_failure(self, test_client, controller):
        controller.scanner.backend = FailingSearchBackend()
        async with test_client as client:
            response = await client.post("/scan")

            assert response.status_code == 500
            assert response.json()["detail"].startswith("Scan failed:")

    @pytest.mark.asyncio
    async def test_malformed_remote_results(self, test_client, controller):
        """A search service returning results without URIs is reported as a scan failure."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"results": [{"preview": "x"}]}))
        async with HttpSearchBackend("http://search", transport=transport) as backend:
            controller.scanner.backend = backend
            async with test_client as client:
                response = await client.post("/scan")

                assert response.status_code == 500
                assert "Malformed search response" in response.json()["detail"]
                assert isinstance(controller.last_error, ScanError)


class TestFixEndpoints:
    """Test /fixes/local and /fixes/batch."""

    @pytest.mark.asyncio
    async def test_local_fix_and_stale_finding(self, test_client, controller, texts):
        await controller.policy.backend.patch(("check.rules", "npm_dependency", "a"), "forbid")
        await controller.policy.load()

        async with test_client as client:
            data = await _scan(client)
            entry = next(e for e in data["diagnostics"] if e["document_uri"] == PKG)
            diagnostic = entry["diagnostics"][0]
            assert diagnostic["severity"] == "error"

            response = await client.post("/fixes/local", json={"diagnostic": diagnostic})
            assert response.status_code == 200
            edits = response.json()["edits"]
            assert len(edits) == 1
            assert edits[0]["replacement"] is None
            assert edits[0]["range"]["start"] == {"line": 3, "character": 0}

            texts[PKG] = '{\n  "dependencies": {\n    "b": "2"\n  }\n}\n'
            response = await client.post("/fixes/local", json={"diagnostic": diagnostic})
            assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_local_fix_foreign_diagnostic(self, test_client, controller):
        diagnostic = {
            "document_uri": PKG,
            "range": {"start": {"line": 0, "character": 0}, "end": {"line": 0, "character": 1}},
            "message": "lint",
            "severity": "hint",
            "identity": "eslint:semi",
        }
        async with test_client as client:
            response = await client.post("/fixes/local", json={"diagnostic": diagnostic})
            assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_batch_fix(self, test_client, controller):
        async with test_client as client:
            await _scan(client)
            response = await client.post("/fixes/batch", json={"kind": "travis_go"})

            assert response.status_code == 200
            data = response.json()
            assert data["affected_documents"] == 1
            assert data["title"] == "Fix 1 occurrence"
            assert data["edit"]["edits"][0]["replacement"] == '\n  - "1.13.x"'


class TestPolicyEndpoints:
    """Test /policy, /commands and /code-actions."""

    @pytest.mark.asyncio
    async def test_policy_repository_scope(self, test_client, controller):
        async with test_client as client:
            response = await client.post(
                "/policy", json={"kind": "npm_dependency", "name": "a", "decision": "allow"}
            )
            assert response.status_code == 202
            assert response.json() == {"outcome": "accepted"}

        await controller.policy.flush()
        assert controller.policy.decide(FindingKind.npm_dependency, "a") == PolicyDecision.allowed

    @pytest.mark.asyncio
    async def test_policy_global_scope(self, test_client, controller):
        async with test_client as client:
            response = await client.post(
                "/policy",
                json={"kind": "npm_dependency", "name": "a", "decision": "allow", "scope": "global"},
            )
            assert response.status_code == 501
            assert response.json() == {"outcome": "not_implemented"}

    @pytest.mark.asyncio
    async def test_policy_invalid_decision(self, test_client, controller):
        async with test_client as client:
            response = await client.post(
                "/policy", json={"kind": "npm_dependency", "name": "a", "decision": "maybe"}
            )
            assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_code_actions_then_command(self, test_client, controller):
        async with test_client as client:
            await _scan(client)
            response = await client.post("/code-actions", json={"document_uri": PKG})

            assert response.status_code == 200
            actions = response.json()
            titles = [a["title"] for a in actions]
            assert titles[0] == "Allow dependency in this repository"
            assert "Forbid dependency globally" in titles

            command = actions[0]["command"]
            response = await client.post("/commands", json=command)
            assert response.status_code == 202

        await controller.policy.flush()
        assert controller.policy.decide(FindingKind.npm_dependency, "a") == PolicyDecision.allowed

    @pytest.mark.asyncio
    async def test_unknown_command(self, test_client, controller):
        async with test_client as client:
            response = await client.post("/commands", json={"command": "rm", "arguments": []})
            assert response.status_code == 400
