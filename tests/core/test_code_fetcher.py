"""
Test suite for CodeFetcher and file eligibility rules.

System role: Verification of the FETCHING_CODE step budgets and filters
"""

import pytest

from testgen.configs.source_host import SourceHostSettings
from testgen.core.exceptions import PermanentLogicError
from testgen.core.runs import CodeFetcher, FetchedCode, detect_language, should_generate_tests


class TestShouldGenerateTests:
    """Test suite for should_generate_tests()."""

    @pytest.mark.parametrize("path", [
        "src/math.js",
        "src/components/Button.tsx",
        "lib/utils.py",
        "index.ts",
    ])
    def test_source_files_should_be_eligible(self, path: str) -> None:
        assert should_generate_tests(path) is True

    @pytest.mark.parametrize("path", [
        "README.md",
        "src/math.test.js",
        "src/math.spec.ts",
        "lib/test_utils.py",
        "lib/utils_test.py",
        "node_modules/lodash/index.js",
        "dist/bundle.js",
        "src/__tests__/math.js",
        "vendor/jquery.js",
        "package.json",
        "jest.config.js",
        "webpack.config.ts",
        "setup.py",
        "conftest.py",
    ])
    def test_noise_should_be_skipped(self, path: str) -> None:
        assert should_generate_tests(path) is False

    def test_custom_extensions_should_be_honored(self) -> None:
        # Act & Assert
        assert should_generate_tests("main.go", allowed_extensions=[".go"]) is True
        assert should_generate_tests("main.js", allowed_extensions=[".go"]) is False


class TestDetectLanguage:
    """Test suite for detect_language()."""

    def test_should_pick_most_common_language(self) -> None:
        assert detect_language(["a.py", "b.py", "c.js"]) == "python"

    def test_should_default_to_javascript(self) -> None:
        assert detect_language([]) == "javascript"


class TestFetchedCode:
    """Test suite for FetchedCode rendering."""

    def test_as_prompt_should_label_each_file(self) -> None:
        # Arrange
        code = FetchedCode(commit_id="abc1234", files={"a.ts": "x", "b.ts": "y"}, total_bytes=2)

        # Act & Assert
        assert code.as_prompt() == "// File: a.ts\nx\n\n// File: b.ts\ny"
        assert code.language == "typescript"
        assert code.framework == "jest"
        assert code.summary().startswith("2 file(s), 2 bytes at abc1234")


class TestCodeFetcher:
    """Test suite for CodeFetcher.fetch()."""

    @pytest.mark.asyncio
    async def test_fetch_should_keep_only_eligible_files(self, fake_github) -> None:
        """Test filtering, path order and the head commit id."""
        # Arrange
        fetcher = CodeFetcher(SourceHostSettings())

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert list(code.files) == ["src/math.js", "src/strings.js"]
        assert code.commit_id == fake_github.head_sha
        assert code.skipped == []
        assert code.total_bytes == sum(len(c.encode()) for c in code.files.values())

    @pytest.mark.asyncio
    async def test_fetch_should_truncate_large_files(self, fake_github) -> None:
        """Test the per-file budget truncates instead of skipping."""
        # Arrange
        fake_github.files = {"src/big.js": "x" * 500}
        fetcher = CodeFetcher(SourceHostSettings(max_file_bytes=100))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert len(code.files["src/big.js"]) == 100
        assert code.truncated == ["src/big.js"]

    @pytest.mark.asyncio
    async def test_truncation_should_not_split_multibyte_characters(self, fake_github) -> None:
        # Arrange
        fake_github.files = {"src/i18n.js": "é" * 10}
        fetcher = CodeFetcher(SourceHostSettings(max_file_bytes=5))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert code.files["src/i18n.js"] == "éé"

    @pytest.mark.asyncio
    async def test_fetch_should_respect_total_and_count_budgets(self, fake_github) -> None:
        """Test files past the total budget or the file cap are skipped."""
        # Arrange
        fake_github.files = {
            "src/a.js": "a" * 40,
            "src/b.js": "b" * 40,
            "src/c.js": "c" * 10,
            "src/d.js": "d" * 10,
        }
        fetcher = CodeFetcher(SourceHostSettings(max_total_bytes=60, max_files=2))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert list(code.files) == ["src/a.js", "src/c.js"]
        assert code.skipped == ["src/b.js", "src/d.js"]
        assert code.total_bytes == 50
        assert fake_github.downloads == ["src/a.js", "src/c.js"]

    @pytest.mark.asyncio
    async def test_spent_byte_budget_should_stop_downloads(self, fake_github) -> None:
        """Test a large tree costs no API calls past the point the budget is used up."""
        # Arrange
        fake_github.files = {f"src/mod{i:03d}.js": "x" * 100 for i in range(500)}
        fetcher = CodeFetcher(SourceHostSettings(max_total_bytes=300, max_files=20))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert len(code.files) == 3
        assert len(fake_github.downloads) == 3
        assert len(code.skipped) == 497

    @pytest.mark.asyncio
    async def test_file_cap_should_bound_downloads(self, fake_github) -> None:
        # Arrange
        fake_github.files = {f"src/mod{i:03d}.js": "x" for i in range(100)}
        fetcher = CodeFetcher(SourceHostSettings(max_files=5))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert len(fake_github.downloads) == 5
        assert list(code.files) == [f"src/mod{i:03d}.js" for i in range(5)]

    @pytest.mark.asyncio
    async def test_oversized_tree_entry_should_be_skipped_without_download(self, fake_github) -> None:
        """Test the tree size decides before any content is fetched."""
        # Arrange
        fake_github.files = {"src/a.js": "a" * 80, "src/b.js": "b" * 10}
        fetcher = CodeFetcher(SourceHostSettings(max_total_bytes=50))

        # Act
        code = await fetcher.fetch(fake_github, "acme/app", "main")

        # Assert
        assert list(code.files) == ["src/b.js"]
        assert code.skipped == ["src/a.js"]
        assert fake_github.downloads == ["src/b.js"]

    @pytest.mark.asyncio
    async def test_fetch_without_eligible_files_should_raise(self, fake_github) -> None:
        # Arrange
        fake_github.files = {"README.md": "# docs", "package.json": "{}"}
        fetcher = CodeFetcher(SourceHostSettings())

        # Act & Assert
        with pytest.raises(PermanentLogicError, match="No files eligible"):
            await fetcher.fetch(fake_github, "acme/app", "main")

    @pytest.mark.asyncio
    async def test_fetch_when_nothing_fits_should_raise(self, fake_github) -> None:
        # Arrange
        fake_github.files = {"src/a.js": "a" * 50}
        fetcher = CodeFetcher(SourceHostSettings(max_total_bytes=10))

        # Act & Assert
        with pytest.raises(PermanentLogicError, match="exceeds the fetch budget"):
            await fetcher.fetch(fake_github, "acme/app", "main")
