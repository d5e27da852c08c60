"""Git utilities for cloning repositories into a scannable corpus."""

import logging
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from git import Repo

logger = logging.getLogger(__name__)


def repo_dir_name(repo_url: str) -> str:
    """Derive a directory name from a repository URL.

    "https://github.com/user/repo.git" -> "user__repo"
    """
    path = re.sub(r"^[a-z+]+://[^/]+/|^[^@]+@[^:]+:", "", repo_url.strip())
    path = re.sub(r"\.git$", "", path.rstrip("/"))
    name = re.sub(r"[^A-Za-z0-9._-]+", "__", path)
    return name or "repo"


def clone_repos(repo_urls: list[str], corpus_path: Path) -> list[Path]:
    """Shallow-clone each repository into its own subdirectory of corpus_path.

    Args:
        repo_urls: URLs of the repositories to clone.
        corpus_path: Directory that becomes the corpus root.

    Returns:
        Paths of the cloned repositories.
    """
    paths = []
    for url in repo_urls:
        name = repo_dir_name(url)
        target = corpus_path / name
        suffix = 1
        while target.exists():
            suffix += 1
            target = corpus_path / f"{name}-{suffix}"
        logger.info(f"Cloning {url} into {target.name}")
        Repo.clone_from(url, target, depth=1)
        paths.append(target)
    return paths


def cleanup_corpus(corpus_path: Path) -> None:
    """Remove a cloned corpus directory."""
    if corpus_path.exists():
        shutil.rmtree(corpus_path, ignore_errors=True)


@contextmanager
def cloned_corpus(repo_urls: list[str]) -> Generator[Path, None, None]:
    """Context manager for cloning repositories and auto-cleanup of the corpus.

    Yields:
        Path to the corpus root.
    """
    corpus_path = Path(tempfile.mkdtemp(prefix="check_search_"))
    try:
        clone_repos(repo_urls, corpus_path)
        yield corpus_path
    finally:
        cleanup_corpus(corpus_path)
