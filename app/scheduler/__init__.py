from app.scheduler.runner import Workflow, WorkflowRunner
from app.services.enforcement_runs import WORKFLOWS, run_exclusive
from app.services.scheduler_config import load_workflow_schedules


def _exclusive(name: str):
    def run(should_stop):
        _, report = run_exclusive(name, WORKFLOWS[name], should_stop=should_stop)
        return report

    return run


def build_runner(run_on_start: bool = False) -> WorkflowRunner:
    workflows = [
        Workflow(
            name=schedule.name,
            func=_exclusive(schedule.name),
            interval_seconds=schedule.interval_seconds,
            enabled=schedule.enabled,
            run_on_start=run_on_start,
        )
        for schedule in load_workflow_schedules()
    ]
    return WorkflowRunner(workflows)


__all__ = ["Workflow", "WorkflowRunner", "build_runner"]
