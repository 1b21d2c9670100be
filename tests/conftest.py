"""
Shared test fixtures and configuration for entire test suite.

Provides: In-memory database sessions, session factories, run fixtures, service mocks
Dependencies: pytest, sqlalchemy, aiosqlite
System role: Test infrastructure and fixture management
"""

import uuid
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
async def test_engine():
    """
    Create in-memory SQLite async engine with every table created.

    Yields:
        AsyncEngine: Engine shared by every session of one test (StaticPool)
    """
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from testgen.boundary.db.base import Base
    from testgen.boundary.db import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    """
    Session factory bound to the test engine.

    Returns:
        async_sessionmaker: Factory configured like the production one
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_async_db(test_session_factory):
    """
    Create in-memory SQLite async database session for testing.

    Yields:
        AsyncSession: Test database session with rollback on teardown
    """
    async with test_session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_run_service():
    """
    Create mock RunService for router tests.

    Returns:
        AsyncMock: Mocked RunService with async methods
    """
    service = AsyncMock()
    service.db = AsyncMock()
    service.db.commit = AsyncMock()
    return service


@pytest.fixture
def run_id() -> uuid.UUID:
    """Generate a test run ID."""
    return uuid.uuid4()


class FakeGitHub:
    """In-memory stand-in for GitHubClient used by fetch and run driver tests."""

    def __init__(self, files: dict[str, str] | None = None, head_sha: str = "abc1234def5678") -> None:
        self.files = dict(files or {})
        self.head_sha = head_sha
        self.created_branches: list[tuple[str, str]] = []
        self.committed: dict[str, str] = {}
        self.pull_requests: list = []
        self.downloads: list[str] = []

    async def __aenter__(self) -> "FakeGitHub":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def get_branch_head_sha(self, repository: str, branch: str) -> str:
        return self.head_sha

    async def get_tree(self, repository: str, ref: str) -> list:
        from testgen.boundary.source_host import TreeEntry

        return [TreeEntry(path=path, size=len(content.encode("utf-8"))) for path, content in self.files.items()]

    async def get_file_content(self, repository: str, path: str, ref: str) -> str:
        self.downloads.append(path)
        return self.files[path]

    async def create_branch(self, repository: str, branch: str, sha: str) -> None:
        self.created_branches.append((branch, sha))

    async def put_file(self, repository: str, path: str, content: str, message: str, branch: str) -> str:
        self.committed[path] = content
        return f"commit-{len(self.committed)}"

    async def open_pull_request(self, repository: str, head: str, base: str, title: str, body: str = ""):
        from testgen.boundary.source_host import PullRequest

        pr = PullRequest(number=17, url=f"https://github.test/{repository}/pull/17", branch=head)
        self.pull_requests.append(pr)
        return pr


@pytest.fixture
def fake_github() -> FakeGitHub:
    """
    Provide an in-memory GitHub with a small JavaScript project.

    Returns:
        FakeGitHub: Source files plus noise the fetcher must skip
    """
    return FakeGitHub(files={
        "src/math.js": "export function add(a, b) { return a + b; }\n",
        "src/strings.js": "export const upper = (s) => s.toUpperCase();\n",
        "src/math.test.js": "test('add', () => {});\n",
        "node_modules/lodash/index.js": "module.exports = {};\n",
        "package.json": "{}\n",
        "README.md": "# app\n",
    })
