"""
Run lifecycle package.

Exports:
  - RunLifecycleDriver: advances persisted runs through their states
  - CodeFetcher, FetchedCode, should_generate_tests: source selection
"""

from testgen.core.runs.code_fetcher import CodeFetcher, FetchedCode, detect_language, should_generate_tests
from testgen.core.runs.run_driver import RunLifecycleDriver

__all__ = [
    "RunLifecycleDriver",
    "CodeFetcher",
    "FetchedCode",
    "detect_language",
    "should_generate_tests",
]
