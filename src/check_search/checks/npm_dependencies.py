"""npm dependency rules for package.json manifests.

Every dependency declared in ``dependencies``, ``devDependencies`` or
``peerDependencies`` is a finding. Forbidden dependencies can be removed from
the manifest with a line deletion.
"""

import json
import re

from ..config import Settings
from ..errors import FindingNotFoundError
from ..models import (
    Command,
    DependencyFinding,
    Document,
    FileFilter,
    FindingKind,
    FixEdit,
    PatternKind,
    PatternSpec,
    PolicyDecision,
    Range,
    RepoFilter,
    ScanQuery,
)
from .common import Check, line_span

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")

# Opening key of a dependency section, e.g. `"devDependencies": {`
SECTION_KEY_RE = re.compile(r'"(?:%s)"\s*:' % "|".join(DEPENDENCY_SECTIONS))

NPM_PACKAGE_URL = "https://www.npmjs.com/package/"


def parse_dependencies(text: str) -> list[DependencyFinding]:
    """
    Parse all dependencies from a package.json file.

    Args:
        text: Full text of package.json

    Returns:
        One finding per distinct dependency name, sorted by name

    Raises:
        ValueError: If the text is not valid JSON or a dependency cannot be located
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        return []

    names: set[str] = set()
    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if isinstance(deps, dict):
            names.update(deps.keys())

    return [
        DependencyFinding(name=name, range=find_dependency_range(text, name))
        for name in sorted(names)
    ]


def find_dependency_range(text: str, name: str) -> Range:
    """
    Find the quoted dependency name where it is declared as a key of a
    dependency section.

    Keys of other objects (``scripts``, ``engines``, ...) are never matched.
    Assumes the key/value pair sits on one line; only the first declaration
    is found.

    Raises:
        ValueError: If the name is not declared in any dependency section
    """
    key_re = re.compile(f'("{re.escape(name)}")\\s*:')
    in_section = False
    for i, line in enumerate(text.split("\n")):
        offset = 0
        if not in_section:
            section = SECTION_KEY_RE.search(line)
            if not section:
                continue
            in_section = True
            offset = section.end()
        elif line.strip().startswith("}"):
            in_section = False
            continue

        match = key_re.search(line, offset)
        if match:
            return Range.from_coords(i, match.start(1), i, match.end(1))
        if "}" in line[offset:]:
            in_section = False
    raise ValueError(f"dependency {name} not found in package.json")


class NpmDependencyCheck(Check):
    kind = FindingKind.npm_dependency
    label = "npm dependency"
    noun = "dependency"

    def query(self, settings: Settings) -> ScanQuery:
        return ScanQuery(
            pattern=PatternSpec(pattern='[Dd]ependencies"', kind=PatternKind.regexp),
            repositories=RepoFilter(
                includes=(settings.repo_include,),
                excludes=("hackathon",),
            ),
            files=FileFilter(includes=(r"(^|/)package\.json$",)),
            max_results=settings.max_results,
        )

    def parse(self, text: str) -> list[DependencyFinding]:
        return parse_dependencies(text)

    def locate(self, document: Document, finding: DependencyFinding) -> Range:
        try:
            return find_dependency_range(document.text, finding.name)
        except ValueError:
            raise FindingNotFoundError(document.uri, finding.name)

    def compute_fix(
        self,
        document: Document,
        finding: DependencyFinding,
        decision: PolicyDecision,
        settings: Settings,
    ) -> FixEdit:
        edit = FixEdit()
        if decision != PolicyDecision.forbidden:
            return edit

        # Only the first single-line occurrence is removed
        range = self.locate(document, finding)
        edit.delete(document.uri, line_span(range))
        return edit

    def fix_title(self, finding: DependencyFinding) -> str:
        return "Remove dependency from package.json (further edits required)"

    def reference_command(self, finding: DependencyFinding) -> Command:
        return Command(
            title=f"View npm package: {finding.name}",
            command="open",
            arguments=[NPM_PACKAGE_URL + finding.name],
        )
