"""
testgen - asynchronous test-generation pipeline.

Queue-driven worker that plans, executes, and scores generated tests,
plus an HTTP-triggered run lifecycle that proposes test cases, waits for
approval, and opens a pull request with the generated scripts.
"""

__version__ = "0.1.0"
