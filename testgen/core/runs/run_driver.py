"""
Run lifecycle driver.

Advances one persisted run through its states:

    drive():   queued -> fetching_code -> generating_test_cases -> proposals
    approve(): proposals -> approved (human selects a subset, no timeout)
    execute(): approved -> generating_test_scripts -> creating_mr -> completed
    record_decision(): only on completed runs

Every write is a single-row UPDATE guarded by the expected prior state and
commits together with at least one RunLog entry. Any exception inside
drive() or execute() marks the run failed; there is no automatic retry.

Dependencies: sqlalchemy, testgen.boundary, testgen.core.generation, testgen.core.tools
System role: Orchestrates the run lifecycle outside the worker loop
"""

import logging
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from testgen.boundary.db.CRUD import run_crud, run_log_crud
from testgen.boundary.db.models import RunDecision, RunModel, RunState
from testgen.boundary.source_host import GitHubClient
from testgen.configs.source_host import SourceHostSettings
from testgen.core.exceptions import InvalidStateTransitionError, RunNotFoundError
from testgen.core.generation import ResilientGenerationClient
from testgen.core.runs.code_fetcher import LANGUAGE_FRAMEWORKS, CodeFetcher
from testgen.core.tools import ToolHelpers
from testgen.observability.correlation import clear_correlation_id, set_correlation_id
from testgen.observability.log_utils import log_exception_with_context

logger = logging.getLogger(__name__)

GitHubFactory = Callable[[str | None], GitHubClient]

_SCRIPT_FILENAMES = {
    "python": "test_testgen_{suffix}.py",
    "typescript": "testgen_{suffix}.test.ts",
    "javascript": "testgen_{suffix}.test.js",
}


class RunLifecycleDriver:
    """Drives persisted runs; one instance is shared by all detached tasks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        generation: ResilientGenerationClient,
        source_host: SourceHostSettings,
        github_factory: GitHubFactory | None = None,
        tools: ToolHelpers | None = None,
    ) -> None:
        """
        Initialize driver.

        Args:
            session_factory: Factory for short-lived sessions (one per step)
            generation: Resilient generation client
            source_host: Source host settings (budgets, branch naming)
            github_factory: Builds a client for a run's token (tests inject a fake)
            tools: Optional tool helpers for CI results and coverage after the PR
        """
        self._session_factory = session_factory
        self._generation = generation
        self._source_host = source_host
        self._github_factory = github_factory or (
            lambda token: GitHubClient.from_settings(source_host, token)
        )
        self._tools = tools
        self._fetcher = CodeFetcher(source_host)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _load(self, run_id: UUID) -> RunModel:
        async with self._session_factory() as session:
            run = await run_crud.get_by_id(session, run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    async def _advance(
        self,
        run_id: UUID,
        expected: RunState,
        target: RunState,
        message: str,
        metadata: dict[str, Any] | None = None,
        **fields: Any,
    ) -> RunModel:
        """
        Guarded transition plus its log entry, committed together.

        Raises:
            RunNotFoundError: Run vanished
            InvalidStateTransitionError: Run is not in expected
        """
        async with self._session_factory() as session:
            run = await run_crud.transition_state(session, run_id, expected, target, **fields)
            if run is None:
                current = await run_crud.get_by_id(session, run_id)
                if current is None:
                    raise RunNotFoundError(str(run_id))
                raise InvalidStateTransitionError(current.state.value, target.value)
            await run_log_crud.append(
                session,
                run_id,
                message,
                metadata={"from": expected.value, "to": target.value, **(metadata or {})},
            )
            await session.commit()

        logger.info(f"{__name__}:_advance - Run {run_id}: {expected.value} -> {target.value}")
        return run

    async def _log(self, run_id: UUID, message: str, level: str = "info", **metadata: Any) -> None:
        async with self._session_factory() as session:
            await run_log_crud.append(session, run_id, message, level=level, metadata=metadata or None)
            await session.commit()

    async def _fail(self, run_id: UUID, error: Exception) -> None:
        message = str(error) or type(error).__name__
        log_exception_with_context(logger, f"{__name__}:_fail - Run {run_id} failed", error, run_id=run_id)
        async with self._session_factory() as session:
            run = await run_crud.mark_failed(session, run_id, message)
            if run is None:
                logger.warning(f"{__name__}:_fail - Run {run_id} already terminal or missing")
                return
            await run_log_crud.append(
                session,
                run_id,
                f"Run failed: {message}",
                level="error",
                metadata={"error_type": type(error).__name__, "to": RunState.FAILED.value},
            )
            await session.commit()

    async def _claim(self, run_id: UUID, expected: RunState, target: RunState, message: str) -> RunModel | None:
        """First transition of a phase; losing the guard means another driver owns the run."""
        try:
            return await self._advance(run_id, expected, target, message)
        except (RunNotFoundError, InvalidStateTransitionError) as e:
            logger.warning(f"{__name__}:_claim - Run {run_id} not claimed for {target.value}: {e}")
            return None

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def drive(self, run_id: UUID) -> RunState | None:
        """
        Fetch code and propose test cases, stopping at proposals.

        Args:
            run_id: Run in the queued state

        Returns:
            RunState: Final state reached, or None when the run was not claimed
        """
        set_correlation_id(str(run_id))
        try:
            run = await self._claim(run_id, RunState.QUEUED, RunState.FETCHING_CODE, "Fetching source code")
            if run is None:
                return None

            try:
                async with self._github_factory(run.access_token) as github:
                    code = await self._fetcher.fetch(github, run.repository, run.branch)

                await self._advance(
                    run_id,
                    RunState.FETCHING_CODE,
                    RunState.GENERATING_TEST_CASES,
                    f"Fetched {len(code.files)} file(s); generating test cases",
                    metadata={"files": len(code.files), "skipped": len(code.skipped), "bytes": code.total_bytes},
                    commit_id=code.commit_id,
                    diff_summary=code.summary(),
                    test_plan={
                        "files": list(code.files),
                        "truncated": code.truncated,
                        "language": code.language,
                        "framework": code.framework,
                    },
                )

                result = await self._generation.generate_test_cases(
                    code.as_prompt(),
                    run.instruction or "",
                    len(code.files),
                )
                proposals = _normalize_proposals(result.data)

                await self._advance(
                    run_id,
                    RunState.GENERATING_TEST_CASES,
                    RunState.PROPOSALS,
                    f"{len(proposals)} test case(s) proposed; awaiting approval",
                    metadata={"source": result.source, "attempts": result.attempts, "path": result.path},
                    proposals=proposals,
                )
                return RunState.PROPOSALS
            except Exception as e:
                await self._fail(run_id, e)
                return RunState.FAILED
        finally:
            clear_correlation_id()

    async def approve(self, run_id: UUID, proposal_ids: list[str]) -> RunModel:
        """
        Approve a subset of proposals.

        Args:
            run_id: Run in the proposals state
            proposal_ids: Ids of proposals to turn into scripts

        Returns:
            RunModel: Run in the approved state

        Raises:
            RunNotFoundError: Unknown run
            InvalidStateTransitionError: Run is not awaiting approval
            ValueError: Empty selection or unknown proposal ids
        """
        run = await self._load(run_id)
        if run.state != RunState.PROPOSALS:
            raise InvalidStateTransitionError(run.state.value, RunState.APPROVED.value)

        known = [str(p.get("id")) for p in run.proposals or []]
        selected = list(dict.fromkeys(str(pid) for pid in proposal_ids))
        if not selected:
            raise ValueError("At least one proposal must be approved")
        unknown = [pid for pid in selected if pid not in known]
        if unknown:
            raise ValueError(f"Unknown proposal ids: {', '.join(unknown)}")

        return await self._advance(
            run_id,
            RunState.PROPOSALS,
            RunState.APPROVED,
            f"Approved {len(selected)} of {len(known)} proposal(s)",
            metadata={"approved": selected},
            approved_proposal_ids=selected,
        )

    async def execute(self, run_id: UUID) -> RunState | None:
        """
        Generate scripts for approved proposals, open a pull request, complete.

        Args:
            run_id: Run in the approved state

        Returns:
            RunState: Final state reached, or None when the run was not claimed
        """
        set_correlation_id(str(run_id))
        try:
            run = await self._claim(
                run_id,
                RunState.APPROVED,
                RunState.GENERATING_TEST_SCRIPTS,
                "Generating test scripts",
            )
            if run is None:
                return None

            try:
                approved_ids = set(run.approved_proposal_ids or [])
                cases = [p for p in run.proposals or [] if str(p.get("id")) in approved_ids]
                plan = run.test_plan or {}
                language = plan.get("language", "javascript")
                framework = plan.get("framework", LANGUAGE_FRAMEWORKS.get(language, "jest"))

                result = await self._generation.generate_test_scripts(cases, language, framework)
                path = f"{self._source_host.test_directory.rstrip('/')}/" + _SCRIPT_FILENAMES.get(
                    language, _SCRIPT_FILENAMES["javascript"]
                ).format(suffix=run_id.hex[:8])
                scripts = {path: result.data}

                await self._advance(
                    run_id,
                    RunState.GENERATING_TEST_SCRIPTS,
                    RunState.CREATING_MR,
                    f"Generated {len(scripts)} script file(s); creating pull request",
                    metadata={"source": result.source, "attempts": result.attempts, "cases": len(cases)},
                    test_scripts=scripts,
                )

                merge_request = await self._open_pull_request(run, scripts, len(cases))
                await self._log(run_id, f"Opened pull request #{merge_request['number']}", **merge_request)

                test_results, coverage = await self._collect_results(run, merge_request, list(scripts))
                analysis = await self._generation.analyze_results(plan, test_results, coverage)

                await self._advance(
                    run_id,
                    RunState.CREATING_MR,
                    RunState.COMPLETED,
                    "Run completed",
                    metadata={"confidence": analysis.data["confidence"]},
                    merge_request=merge_request,
                    test_results=test_results,
                    coverage=coverage,
                    confidence_score=analysis.data["confidence"],
                )
                return RunState.COMPLETED
            except Exception as e:
                await self._fail(run_id, e)
                return RunState.FAILED
        finally:
            clear_correlation_id()

    async def _open_pull_request(self, run: RunModel, scripts: dict[str, str], case_count: int) -> dict[str, Any]:
        branch = f"{self._source_host.test_branch_prefix}{run.id.hex[:8]}"
        async with self._github_factory(run.access_token) as github:
            head_sha = await github.get_branch_head_sha(run.repository, run.branch)
            await github.create_branch(run.repository, branch, head_sha)
            commits = []
            for path, content in scripts.items():
                commits.append(
                    await github.put_file(
                        run.repository,
                        path,
                        content,
                        f"test: add generated tests ({path})",
                        branch,
                    )
                )
            pr = await github.open_pull_request(
                run.repository,
                head=branch,
                base=run.branch,
                title=f"Add generated tests for {run.branch}",
                body=f"Generated {case_count} approved test case(s) across {len(scripts)} file(s).",
            )
        return {
            "number": pr.number,
            "url": pr.url,
            "branch": branch,
            "base": run.branch,
            "base_sha": head_sha,
            "commits": commits,
        }

    async def _collect_results(
        self,
        run: RunModel,
        merge_request: dict[str, Any],
        files: list[str],
    ) -> tuple[dict, dict]:
        """CI results and coverage for the new branch; tool failures are recorded, not raised."""
        if self._tools is None:
            return {"status": "not_run", "reason": "no tool server configured"}, {}

        ci = await self._tools.run_ci(
            run.project_id,
            {"branch": merge_request["branch"], "files": files},
        )
        if not ci.success:
            await self._log(run.id, "CI run failed", level="warning", error=ci.error)
            return {"status": "error", "error": ci.error}, {}

        ci_data = ci.data if isinstance(ci.data, dict) else {"output": ci.data}
        report_id = ci_data.get("report_id") or ci_data.get("id") or merge_request["branch"]
        coverage = await self._tools.get_coverage(str(report_id))
        if not coverage.success:
            await self._log(run.id, "Coverage unavailable", level="warning", error=coverage.error)
            return ci_data, {}
        return ci_data, coverage.data if isinstance(coverage.data, dict) else {"report": coverage.data}

    async def record_decision(
        self,
        run_id: UUID,
        decision: RunDecision,
        data: dict[str, Any] | None = None,
    ) -> RunModel:
        """
        Store the user's decision on a completed run.

        Raises:
            RunNotFoundError: Unknown run
            InvalidStateTransitionError: Run has not completed
        """
        async with self._session_factory() as session:
            run = await run_crud.update_fields(
                session,
                run_id,
                RunState.COMPLETED,
                decision=decision,
                decision_data=data or {},
            )
            if run is None:
                current = await run_crud.get_by_id(session, run_id)
                if current is None:
                    raise RunNotFoundError(str(run_id))
                raise InvalidStateTransitionError(current.state.value, f"decision:{decision.value}")
            await run_log_crud.append(
                session,
                run_id,
                f"Decision recorded: {decision.value}",
                metadata={"decision": decision.value},
            )
            await session.commit()
        return run


def _normalize_proposals(data: Any) -> list[dict[str, Any]]:
    """Give every proposal a unique string id."""
    proposals = []
    seen: set[str] = set()
    for index, item in enumerate(data if isinstance(data, list) else [], start=1):
        if not isinstance(item, dict):
            continue
        proposal = dict(item)
        pid = str(proposal.get("id") or f"test_{index:03d}")
        while pid in seen:
            pid = f"{pid}_{index}"
        seen.add(pid)
        proposal["id"] = pid
        proposals.append(proposal)
    return proposals
