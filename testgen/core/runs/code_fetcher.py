"""
Source code fetcher for runs.

Lists the repository tree at the branch head, keeps files worth testing and
downloads them within per-file, total-size and file-count budgets.

Dependencies: testgen.boundary.source_host, testgen.configs
System role: FETCHING_CODE step of the run lifecycle
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterable

from testgen.boundary.source_host import GitHubClient
from testgen.configs.source_host import SourceHostSettings
from testgen.core.exceptions import PermanentLogicError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx", ".py")
DEFAULT_EXCLUDED_PARTS = ("node_modules", "dist", "build", "vendor", "coverage", "__tests__", "tests")

TEST_FILE_PATTERN = re.compile(r"(\.(test|spec)\.[jt]sx?$)|(^test_.*\.py$)|(_test\.py$)", re.IGNORECASE)
CONFIG_FILE_PATTERN = re.compile(
    r"(^package(-lock)?\.json$)|(\.config\.[cm]?[jt]s$)|(^setup\.py$)|(^conftest\.py$)|(^manage\.py$)",
    re.IGNORECASE,
)

LANGUAGE_FRAMEWORKS = {
    "python": "pytest",
    "typescript": "jest",
    "javascript": "jest",
}

_EXTENSION_LANGUAGES = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
}


def should_generate_tests(
    path: str,
    allowed_extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    excluded_path_parts: Iterable[str] = DEFAULT_EXCLUDED_PARTS,
) -> bool:
    """
    Decide whether a repository file deserves generated tests.

    Skips test/spec files, build output, dependencies, vendored code and
    config files; keeps only allowed extensions.

    Args:
        path: Repository-relative POSIX path
        allowed_extensions: Extensions eligible for generation
        excluded_path_parts: Directory names that disqualify a file

    Returns:
        bool: True if the file should be sent for test generation
    """
    posix = PurePosixPath(path)
    name = posix.name

    if posix.suffix.lower() not in {ext.lower() for ext in allowed_extensions}:
        return False
    if TEST_FILE_PATTERN.search(name):
        return False
    excluded = {part.lower() for part in excluded_path_parts}
    if any(part.lower() in excluded for part in posix.parts[:-1]):
        return False
    if CONFIG_FILE_PATTERN.search(name):
        return False
    return True


def detect_language(paths: Iterable[str]) -> str:
    """Most common language among paths (javascript when unknown)."""
    counts = Counter(
        _EXTENSION_LANGUAGES[PurePosixPath(p).suffix.lower()]
        for p in paths
        if PurePosixPath(p).suffix.lower() in _EXTENSION_LANGUAGES
    )
    if not counts:
        return "javascript"
    return counts.most_common(1)[0][0]


def _truncate_utf8(content: str, max_bytes: int) -> tuple[str, bool]:
    encoded = content.encode("utf-8")
    if len(encoded) <= max_bytes:
        return content, False
    return encoded[:max_bytes].decode("utf-8", errors="ignore"), True


@dataclass
class FetchedCode:
    """Files pulled for one run."""

    commit_id: str
    files: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    truncated: list[str] = field(default_factory=list)
    total_bytes: int = 0

    @property
    def language(self) -> str:
        return detect_language(self.files)

    @property
    def framework(self) -> str:
        return LANGUAGE_FRAMEWORKS[self.language]

    def summary(self) -> str:
        lines = [f"{len(self.files)} file(s), {self.total_bytes} bytes at {self.commit_id[:7]}"]
        lines.extend(f"- {path}" for path in self.files)
        if self.skipped:
            lines.append(f"{len(self.skipped)} eligible file(s) skipped by fetch budgets")
        return "\n".join(lines)

    def as_prompt(self) -> str:
        return "\n\n".join(f"// File: {path}\n{content}" for path, content in self.files.items())


class CodeFetcher:
    """Pulls eligible source files for a run within configured budgets."""

    def __init__(self, settings: SourceHostSettings) -> None:
        self._settings = settings

    def is_eligible(self, path: str) -> bool:
        return should_generate_tests(
            path,
            self._settings.allowed_extensions,
            self._settings.excluded_path_parts,
        )

    async def fetch(self, client: GitHubClient, repository: str, branch: str) -> FetchedCode:
        """
        Fetch eligible files at the head of branch.

        Files are taken in path order. Each is truncated to max_file_bytes;
        a file whose tree size would push the total past max_total_bytes is
        skipped without being downloaded. Fetching stops once max_files are
        collected, the byte budget is spent, or max_files downloads were
        made, so API calls per run never exceed max_files.

        Args:
            client: Authenticated source host client
            repository: owner/name
            branch: Branch to read

        Returns:
            FetchedCode: Files plus the head commit id

        Raises:
            PermanentLogicError: No eligible files in the tree
            ExternalServiceRejection: Repository or branch not accessible
            TransientInfrastructureError: Source host unavailable
        """
        settings = self._settings
        commit_id = await client.get_branch_head_sha(repository, branch)
        tree = await client.get_tree(repository, commit_id)
        candidates = sorted(
            (entry for entry in tree if self.is_eligible(entry.path)),
            key=lambda entry: entry.path,
        )

        logger.info(
            f"{__name__}:fetch - {repository}@{branch}: {len(candidates)} eligible of {len(tree)} files"
        )
        if not candidates:
            raise PermanentLogicError(
                f"No files eligible for test generation in {repository}@{branch}",
                details={"repository": repository, "branch": branch, "tree_size": len(tree)},
            )

        fetched = FetchedCode(commit_id=commit_id)
        downloads = 0
        for index, entry in enumerate(candidates):
            remaining = settings.max_total_bytes - fetched.total_bytes
            if (
                len(fetched.files) >= settings.max_files
                or downloads >= settings.max_files
                or remaining <= 0
            ):
                fetched.skipped.extend(e.path for e in candidates[index:])
                break

            # Tree sizes are raw bytes; truncation caps them at max_file_bytes
            if min(entry.size, settings.max_file_bytes) > remaining:
                fetched.skipped.append(entry.path)
                continue

            downloads += 1
            content = await client.get_file_content(repository, entry.path, commit_id)
            content, was_truncated = _truncate_utf8(content, settings.max_file_bytes)
            size = len(content.encode("utf-8"))

            if size > remaining:
                fetched.skipped.append(entry.path)
                continue

            fetched.files[entry.path] = content
            fetched.total_bytes += size
            if was_truncated:
                fetched.truncated.append(entry.path)

        logger.info(
            f"{__name__}:fetch - Kept {len(fetched.files)} file(s) with {downloads} download(s), "
            f"{len(fetched.skipped)} skipped"
        )

        if not fetched.files:
            raise PermanentLogicError(
                f"Every eligible file in {repository}@{branch} exceeds the fetch budget",
                details={"skipped": fetched.skipped[:20]},
            )
        return fetched
