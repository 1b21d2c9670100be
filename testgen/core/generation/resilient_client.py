"""
Resilient generation client.

Wraps an unreliable model backend so callers always get usable content:
    1. connectivity probe; failure goes straight to the fallback payload
       without spending a generation attempt
    2. up to max_attempts completions, attempt N with timeout base * N
    3. exponential backoff (2 ** attempt seconds) between attempts
    4. tolerant parsing through parse_or_fallback

Unreachable backends and unparseable output never raise; the result
records whether it came from the live model or the fallback.

Dependencies: tenacity, langchain_core, testgen.core.generation
System role: LLM access for the worker loop and the run lifecycle driver
"""

import asyncio
import copy
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from testgen.configs.llm import LLMSettings
from testgen.core.exceptions import MalformedResponseError, TransientInfrastructureError
from testgen.core.generation.fallbacks import (
    FALLBACK_ANALYSIS,
    FALLBACK_TEST_CASES,
    FALLBACK_TEST_PLAN,
    fallback_test_script,
)
from testgen.core.generation.json_repair import parse_or_fallback, strip_code_fences
from testgen.core.generation.prompts import (
    ANALYSIS_PROMPT,
    TEST_CASES_PROMPT,
    TEST_PLAN_PROMPT,
    TEST_SCRIPTS_PROMPT,
)
from testgen.core.generation.providers import GenerationProvider, create_provider

logger = logging.getLogger(__name__)

SOURCE_LIVE = "live"
SOURCE_FALLBACK = "fallback"

TEST_CASE_KEYS = ("id", "title")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class GenerationResult:
    """Generated content plus how it was obtained."""

    data: Any
    source: str
    attempts: int
    path: str = ""

    @property
    def is_fallback(self) -> bool:
        return self.source == SOURCE_FALLBACK


def _clamp_confidence(value: Any, default: float) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return default


def _is_plan(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("tests"), list)


def _is_analysis(data: Any) -> bool:
    return isinstance(data, dict) and "confidence" in data


def _is_case_list(data: Any) -> bool:
    if isinstance(data, dict):
        data = data.get("test_cases")
    return (
        isinstance(data, list)
        and bool(data)
        and all(isinstance(item, dict) and "title" in item for item in data)
    )


class ResilientGenerationClient:
    """Probe, retry, parse and fall back around a generation provider."""

    def __init__(
        self,
        provider: GenerationProvider,
        max_attempts: int = 3,
        base_timeout_seconds: float = 30.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Initialize client.

        Args:
            provider: Model backend
            max_attempts: Completions tried before falling back
            base_timeout_seconds: Timeout of attempt 1; attempt N gets N times this
            sleep: Awaitable sleep used for backoff (injected in tests)
        """
        self._provider = provider
        self._max_attempts = max(1, max_attempts)
        self._base_timeout_seconds = base_timeout_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: LLMSettings, provider: str | None = None) -> "ResilientGenerationClient":
        """Build a client around the configured provider."""
        return cls(
            create_provider(settings, provider),
            max_attempts=settings.max_attempts,
            base_timeout_seconds=settings.base_timeout_seconds,
        )

    async def _run(
        self,
        operation: str,
        messages: list[BaseMessage],
        fallback: Any,
        parse: Callable[[str], Any],
    ) -> GenerationResult:
        """
        Execute the probe/attempt/backoff protocol for one operation.

        Args:
            operation: Operation name for logs
            messages: Chat messages to send
            fallback: Payload returned when every path fails
            parse: Converts raw text to (data, path); raises MalformedResponseError

        Returns:
            GenerationResult: Live or fallback content
        """
        if not await self._provider.probe():
            logger.warning(
                f"{__name__}:{operation} - Probe failed for {self._provider.name}, "
                "returning fallback without generation attempts"
            )
            return GenerationResult(copy.deepcopy(fallback), SOURCE_FALLBACK, 0, "probe_failed")

        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=2, min=0),
            retry=retry_if_exception_type((TransientInfrastructureError, MalformedResponseError)),
            sleep=self._sleep,
            before_sleep=lambda retry_state: logger.warning(
                f"{__name__}:{operation} - Attempt {retry_state.attempt_number}/"
                f"{self._max_attempts} failed: {retry_state.outcome.exception()}"
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    timeout = self._base_timeout_seconds * attempts
                    raw = await self._provider.complete(messages, timeout)
                    data, path = parse(raw)
        except (TransientInfrastructureError, MalformedResponseError) as e:
            logger.error(
                f"{__name__}:{operation} - All {attempts} attempts failed "
                f"({type(e).__name__}), returning fallback"
            )
            return GenerationResult(copy.deepcopy(fallback), SOURCE_FALLBACK, attempts, "exhausted")

        logger.info(
            f"{__name__}:{operation} - Live result from {self._provider.name} "
            f"after {attempts} attempt(s) via {path} path"
        )
        return GenerationResult(data, SOURCE_LIVE, attempts, path)

    @staticmethod
    def _json_parser(
        fallback: Any,
        validate: Callable[[Any], bool],
        salvage_keys: tuple[str, ...] | None = None,
    ) -> Callable[[str], tuple[Any, str]]:
        def parse(raw: str) -> tuple[Any, str]:
            outcome = parse_or_fallback(raw, fallback, salvage_keys=salvage_keys, validate=validate)
            if outcome.is_fallback:
                raise MalformedResponseError("Model output could not be parsed", raw_excerpt=raw)
            return outcome.data, outcome.path

        return parse

    @staticmethod
    def _messages(template: ChatPromptTemplate, **values: Any) -> list[BaseMessage]:
        return template.format_messages(**values)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def generate_test_plan(self, job: dict[str, Any]) -> GenerationResult:
        """
        Plan tests for a queued job.

        Args:
            job: Job payload (project_id, commit_id, description, ...)

        Returns:
            GenerationResult: Plan dict with tests, tools, confidence, reasoning
        """
        messages = self._messages(
            TEST_PLAN_PROMPT,
            project_id=job.get("project_id", "unknown"),
            commit_id=job.get("commit_id", "unknown"),
            description=job.get("description") or json.dumps(job, default=str),
        )
        result = await self._run(
            "generate_test_plan",
            messages,
            FALLBACK_TEST_PLAN,
            self._json_parser(FALLBACK_TEST_PLAN, _is_plan),
        )
        result.data["confidence"] = _clamp_confidence(
            result.data.get("confidence"), FALLBACK_TEST_PLAN["confidence"]
        )
        return result

    async def analyze_results(
        self,
        test_plan: dict[str, Any],
        ci_results: Any,
        coverage: Any,
    ) -> GenerationResult:
        """
        Score how well a change is tested.

        Returns:
            GenerationResult: Analysis dict whose confidence is clamped to [0, 1]
        """
        messages = self._messages(
            ANALYSIS_PROMPT,
            test_plan=json.dumps(test_plan, default=str),
            ci_results=json.dumps(ci_results, default=str),
            coverage=json.dumps(coverage, default=str),
        )
        result = await self._run(
            "analyze_results",
            messages,
            FALLBACK_ANALYSIS,
            self._json_parser(FALLBACK_ANALYSIS, _is_analysis),
        )
        result.data["confidence"] = _clamp_confidence(
            result.data.get("confidence"), FALLBACK_ANALYSIS["confidence"]
        )
        return result

    async def generate_test_cases(
        self,
        code: str,
        instruction: str = "",
        file_count: int = 1,
    ) -> GenerationResult:
        """
        Propose test cases for fetched source code.

        Partial arrays are salvaged item by item when at least one case
        with an id and title survives.

        Returns:
            GenerationResult: List of test case dicts
        """
        messages = self._messages(
            TEST_CASES_PROMPT,
            code=code,
            instruction=instruction or "none",
            file_count=file_count,
        )
        result = await self._run(
            "generate_test_cases",
            messages,
            FALLBACK_TEST_CASES,
            self._json_parser(FALLBACK_TEST_CASES, _is_case_list, TEST_CASE_KEYS),
        )
        if isinstance(result.data, dict):
            result.data = result.data["test_cases"]
        return result

    async def generate_test_scripts(
        self,
        test_cases: list[dict[str, Any]],
        language: str = "javascript",
        framework: str = "jest",
    ) -> GenerationResult:
        """
        Write runnable test code for approved test cases.

        Returns:
            GenerationResult: Source code string; a scaffold when live generation fails
        """
        messages = self._messages(
            TEST_SCRIPTS_PROMPT,
            test_cases=json.dumps(test_cases, indent=2, default=str),
            language=language,
            framework=framework,
        )

        def parse(raw: str) -> tuple[str, str]:
            code = strip_code_fences(raw)
            if not code.strip():
                raise MalformedResponseError("Empty test script")
            return code, "code"

        return await self._run(
            "generate_test_scripts",
            messages,
            fallback_test_script(test_cases),
            parse,
        )
