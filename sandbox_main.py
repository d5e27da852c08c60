#!/usr/bin/env python3
"""
Sandbox entrypoint for check-search.
Reads scan parameters from stdin JSON, runs one scan epoch over a corpus, outputs JSON to stdout.

Input (stdin JSON):
{
  "path": "/path/to/corpus",            // directory of repositories (use this OR repo_urls)
  "repo_urls": ["https://github.com/user/repo"],
  "policy": {"npm_dependency": {"left-pad": "forbid", "react": "allow"}},  // optional
  "kinds": ["npm_dependency"],          // optional, default all
  "fix_kind": "npm_dependency",         // optional, include a batch fix for this kind
  "go_version": "1.13.x"                // optional
}
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from git.exc import GitCommandError

from check_search.checks import default_checks
from check_search.config import load_settings
from check_search.errors import CheckSearchError
from check_search.git_utils import cloned_corpus
from check_search.models import RULES_NAMESPACE, FindingKind
from check_search.pipeline import PipelineController
from check_search.policy import InMemoryConfigBackend, PolicyStore
from check_search.scanner import CorpusScanner, LocalCorpusBackend

logging.basicConfig(level=logging.INFO, stream=sys.stderr)


async def run_scan(corpus_path: str, input_data: dict) -> dict:
    settings = load_settings()
    if input_data.get("go_version"):
        settings = settings.model_copy(update={"go_version": input_data["go_version"]})

    checks = default_checks()
    kinds = input_data.get("kinds")
    if kinds:
        checks = {k: c for k, c in checks.items() if k.value in kinds}

    backend = LocalCorpusBackend(corpus_path)
    controller = PipelineController(
        scanner=CorpusScanner(backend, cache_size=settings.cache_size),
        documents=backend,
        policy=PolicyStore(InMemoryConfigBackend({RULES_NAMESPACE: input_data.get("policy") or {}})),
        settings=settings,
        checks=checks,
    )
    try:
        await controller.policy.load()
        await controller.run_epoch("sandbox")

        output = {
            "diagnostics": [e.model_dump(mode="json") for e in controller.registry.to_entries()],
            "status": controller.status.current().model_dump(mode="json"),
        }
        fix_kind = input_data.get("fix_kind")
        if fix_kind:
            edit, affected = await controller.fixes.compute_batch_fix(FindingKind(fix_kind))
            output["batch_fix"] = {
                "edit": edit.model_dump(mode="json"),
                "affected_documents": affected,
            }
        return output
    finally:
        await controller.close()


def main() -> None:
    try:
        input_data = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        print(json.dumps({"error": f"Invalid JSON input: {e}"}))
        sys.exit(1)

    path = input_data.get("path")
    repo_urls = input_data.get("repo_urls")
    if not path and not repo_urls:
        print(
            json.dumps(
                {
                    "error": "Missing required input: 'path' or 'repo_urls'",
                    "example": {"repo_urls": ["https://github.com/user/repo"]},
                }
            )
        )
        sys.exit(1)

    try:
        if path:
            response = asyncio.run(run_scan(path, input_data))
        else:
            with cloned_corpus(repo_urls) as corpus_path:
                response = asyncio.run(run_scan(str(corpus_path), input_data))
        print(json.dumps(response))
    except GitCommandError as e:
        print(json.dumps({"error": f"Failed to clone repository: {e}"}))
        sys.exit(1)
    except (CheckSearchError, ValueError) as e:
        print(json.dumps({"error": str(e)}))
        sys.exit(1)


if __name__ == "__main__":
    main()
