"""
Adapters between webhook deliveries and pipeline runs.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .github_integration import PushEvent
from .pipeline import DeploymentPipeline, PipelineRun, new_run_id

logger = logging.getLogger(__name__)


@dataclass
class DispatchDecision:
    accepted: bool
    reason: str
    run_id: Optional[str] = None
    commit: Optional[str] = None


class PipelineDispatcher:
    """Turns push deliveries into pipeline runs, one run per delivery."""

    def __init__(
        self,
        pipeline_factory: Callable[[], DeploymentPipeline],
        tracked_branch: str,
        history_size: int = 50,
    ):
        self.pipeline_factory = pipeline_factory
        self.tracked_branch = tracked_branch
        self.history_size = history_size
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._seen_deliveries: "OrderedDict[str, str]" = OrderedDict()
        self._runs: "OrderedDict[str, PipelineRun]" = OrderedDict()
        self._pending: Dict[str, Dict] = {}

    def handle_push(self, delivery_id: Optional[str], event: PushEvent) -> DispatchDecision:
        if event.branch != self.tracked_branch:
            return DispatchDecision(False, f"ref {event.ref} is not the tracked branch {self.tracked_branch}")
        if event.is_branch_deletion:
            return DispatchDecision(False, "branch deletion")

        with self._state_lock:
            if delivery_id and delivery_id in self._seen_deliveries:
                return DispatchDecision(
                    False, "duplicate delivery", run_id=self._seen_deliveries[delivery_id]
                )
            run_id = new_run_id()
            if delivery_id:
                self._seen_deliveries[delivery_id] = run_id
                while len(self._seen_deliveries) > self.history_size * 4:
                    self._seen_deliveries.popitem(last=False)

        logger.info(f"Accepted push {event.after[:7]} on {event.branch} as run {run_id}")
        return DispatchDecision(True, "push to tracked branch", run_id=run_id, commit=event.after)

    def run(self, run_id: str, trigger: str, commit: Optional[str] = None) -> PipelineRun:
        """Execute a pipeline; concurrent calls wait for the previous run to finish."""
        with self._state_lock:
            self._pending[run_id] = {"run_id": run_id, "trigger": trigger, "commit": commit, "status": "pending"}
        try:
            with self._run_lock:
                pipeline = self.pipeline_factory()
                run = pipeline.run(trigger=trigger, commit=commit, run_id=run_id)
        finally:
            with self._state_lock:
                self._pending.pop(run_id, None)
        self._record(run)
        return run

    def _record(self, run: PipelineRun) -> None:
        with self._state_lock:
            self._runs[run.run_id] = run
            while len(self._runs) > self.history_size:
                self._runs.popitem(last=False)

    def runs(self) -> List[Dict]:
        with self._state_lock:
            pending = list(self._pending.values())
            return pending + [run.to_dict() for run in reversed(self._runs.values())]

    def get(self, run_id: str) -> Optional[Dict]:
        with self._state_lock:
            if run_id in self._runs:
                return self._runs[run_id].to_dict()
            return self._pending.get(run_id)
