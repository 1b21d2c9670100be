"""
Background workers.

Exports:
  - OrchestratorWorker: queue consumer driving the job state machine
  - WorkerMetrics, JobRequest

Run standalone with: python -m testgen.workers
"""

from testgen.workers.orchestrator_worker import JobRequest, OrchestratorWorker, WorkerMetrics

__all__ = ["OrchestratorWorker", "WorkerMetrics", "JobRequest"]
