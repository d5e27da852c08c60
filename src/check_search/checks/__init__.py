"""Finding kinds checked across the corpus."""

from ..models import FindingKind
from .common import Check
from .npm_dependencies import NpmDependencyCheck
from .travis_go import TravisGoCheck


def default_checks() -> dict[FindingKind, Check]:
    """Return one instance of every built-in check, keyed by kind."""
    checks: list[Check] = [NpmDependencyCheck(), TravisGoCheck()]
    return {check.kind: check for check in checks}


__all__ = ["Check", "NpmDependencyCheck", "TravisGoCheck", "default_checks"]
