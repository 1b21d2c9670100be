"""
Prompt templates for test generation.

One ChatPromptTemplate per generation operation. Every template asks for
bare JSON (or bare code for scripts) because output is parsed client-side.

Dependencies: langchain_core.prompts
System role: Prompt templates for the generation client
"""

from langchain_core.prompts import ChatPromptTemplate

SYSTEM_PROMPT = """You are a senior software testing engineer working inside an automated pipeline.
Your answers are parsed by a program, never read by a human.

## Output rules
- Return ONLY the requested format, no prose before or after
- Do NOT wrap JSON in markdown code fences
- Use double quotes for every JSON key and string
- Never leave trailing commas"""

TEST_PLAN_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_PROMPT),
    ("human", """Plan the tests for this change.

Project: {project_id}
Commit: {commit_id}
Change description:
{description}

Return a JSON object:
{{
  "tests": [{{"type": "unit|integration|e2e", "description": "...", "priority": "high|medium|low"}}],
  "tools": ["get_diff", "run_ci", "get_coverage"],
  "confidence": <0.0-1.0>,
  "reasoning": "<one sentence>"
}}"""),
])

ANALYSIS_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_PROMPT),
    ("human", """Assess the outcome of this test run.

Test plan:
{test_plan}

CI results:
{ci_results}

Coverage:
{coverage}

Return a JSON object:
{{
  "confidence": <0.0-1.0 confidence that the change is adequately tested>,
  "summary": "<two sentences>",
  "recommendations": ["..."],
  "next_steps": ["..."],
  "quality_score": <0-100>
}}"""),
])

TEST_CASES_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_PROMPT),
    ("human", """Generate 3-5 test cases that maximise coverage of the code below.

Focus on core logic first, then input validation, error paths, branches,
loops, async behaviour and boundary values. Each case must cover a
different code path.

Additional instructions: {instruction}

Code ({file_count} files):
{code}

Return a JSON array:
[
  {{
    "id": "test_001",
    "title": "...",
    "description": "...",
    "test_type": "unit|integration",
    "priority": "high|medium|low",
    "test_steps": ["..."],
    "expected_result": "...",
    "test_data": {{}}
  }}
]"""),
])

TEST_SCRIPTS_PROMPT = ChatPromptTemplate.from_messages([
    ("system", SYSTEM_PROMPT),
    ("human", """Write {framework} unit tests in {language} for these approved test cases.

Approved test cases:
{test_cases}

Requirements:
1. Include imports, setup and teardown
2. One test per case with a descriptive name
3. Real assertions only

Return ONLY the raw test source code."""),
])
