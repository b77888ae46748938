"""Threaded periodic runner for the enforcement workflows.

Each workflow gets one thread that sleeps for its interval, runs once, and
sleeps again, so a slow run pushes the next one back instead of overlapping
it. A per-workflow lock also covers manual ``run_now`` calls. A workflow
returning None was skipped because another process holds its lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from app.metrics import observe_job

logger = logging.getLogger(__name__)


@dataclass
class Workflow:
    name: str
    func: Callable[..., Any]
    interval_seconds: float
    enabled: bool = True
    run_on_start: bool = False


@dataclass
class WorkflowState:
    runs: int = 0
    failures: int = 0
    last_status: str | None = None
    last_report: Any = None
    last_started_at: float | None = None
    last_finished_at: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class WorkflowRunner:
    def __init__(self, workflows: list[Workflow]) -> None:
        self.workflows = {workflow.name: workflow for workflow in workflows}
        self.state = {workflow.name: WorkflowState() for workflow in workflows}
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        for workflow in self.workflows.values():
            if not workflow.enabled:
                logger.info("Workflow %s disabled", workflow.name)
                continue
            thread = threading.Thread(
                target=self._loop,
                args=(workflow,),
                name=f"workflow-{workflow.name}",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)
            logger.info(
                "Workflow %s scheduled every %ss", workflow.name, workflow.interval_seconds
            )

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop re-arming timers; in-flight runs stop after their current item."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        logger.info("Workflow runner stopped")

    def wait(self) -> None:
        self._stop.wait()

    def run_now(self, name: str) -> dict:
        """Run a workflow immediately unless it is already running."""
        workflow = self.workflows.get(name)
        if not workflow:
            raise KeyError(name)
        if self.stopping:
            return {"workflow": name, "status": "stopping"}
        return self._run(workflow)

    def _loop(self, workflow: Workflow) -> None:
        if workflow.run_on_start and not self.stopping:
            self._run(workflow)
        while not self._stop.wait(workflow.interval_seconds):
            self._run(workflow)

    def _run(self, workflow: Workflow) -> dict:
        state = self.state[workflow.name]
        if not state.lock.acquire(blocking=False):
            logger.info("Workflow %s already running; skipping", workflow.name)
            return {"workflow": workflow.name, "status": "already_running"}
        start = time.monotonic()
        state.last_started_at = time.time()
        status = "success"
        report = None
        try:
            report = workflow.func(should_stop=self._stop.is_set)
            if report is None:
                # Lock held by another process
                status = "already_running"
            elif getattr(report, "error", None):
                status = "error"
        except Exception:
            status = "error"
            logger.exception("Workflow %s crashed", workflow.name)
        finally:
            duration = time.monotonic() - start
            state.runs += 1
            if status == "error":
                state.failures += 1
            state.last_status = status
            state.last_report = report
            state.last_finished_at = time.time()
            observe_job(f"scheduler.{workflow.name}", status, duration)
            state.lock.release()
        return {"workflow": workflow.name, "status": status, "report": report}
