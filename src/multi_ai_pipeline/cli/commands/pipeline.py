"""pipeline command group: drive the stage plan."""

import json

import click

from multi_ai_pipeline.cli.commands import exit_with_error
from multi_ai_pipeline.constants import EXIT_VALIDATION_ERROR
from multi_ai_pipeline.errors import PipelineError
from multi_ai_pipeline.services.pipeline_service import PipelineOrchestrator, TickResult
from multi_ai_pipeline.utils.events import EventEmitter
from multi_ai_pipeline.utils.json_state import JsonStateError


def _orchestrator(obj) -> PipelineOrchestrator:
    return PipelineOrchestrator(obj["config"], EventEmitter())


def _finish(result: TickResult) -> None:
    if result.outcome == "escalated":
        click.get_current_context().exit(EXIT_VALIDATION_ERROR)


@click.group()
def pipeline():
    """Initialise, inspect and advance the pipeline."""


@pipeline.command()
@click.option("--force", is_flag=True, help="Start over: full reset of artifacts, markers and state")
@click.pass_obj
def init(obj, force):
    """Create the task directory and the state document."""
    orchestrator = _orchestrator(obj)
    orchestrator.task_dir.mkdir(parents=True, exist_ok=True)
    # Counters may only be zeroed together with the artifacts they count
    state = orchestrator.reset() if force else orchestrator.store.init()
    click.echo(f"Pipeline {state.pipeline_id} ready in {orchestrator.task_dir}")


@pipeline.command()
@click.option("--stuck-after", type=click.IntRange(min=1), default=600, show_default=True,
              help="Seconds without a state update before the pipeline counts as stuck")
@click.pass_obj
def status(obj, stuck_after):
    """Show the state document and the detected phase."""
    orchestrator = _orchestrator(obj)
    try:
        state = orchestrator.store.load()
        decision = orchestrator.detect()
        stuck = orchestrator.store.is_stuck(stuck_after)
    except JsonStateError as e:
        raise click.ClickException(str(e))
    report = {
        "state": state.model_dump(mode="json", exclude_none=True),
        "phase": decision.model_dump(mode="json", exclude={"document"}),
        "stuck": stuck,
    }
    click.echo(json.dumps(report, indent=2))


@pipeline.command("next")
@click.pass_obj
def next_(obj):
    """Print the next decision without executing it."""
    orchestrator = _orchestrator(obj)
    try:
        decision = orchestrator.detect()
    except JsonStateError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(decision.model_dump(mode="json", exclude={"document"})))


@pipeline.command()
@click.option("--answers", help="Answers to the pending clarification questions")
@click.pass_obj
def tick(obj, answers):
    """Execute exactly one decision."""
    orchestrator = _orchestrator(obj)
    try:
        result = orchestrator.tick(answers=answers)
    except PipelineError as e:
        exit_with_error(orchestrator.emitter, e)
    except JsonStateError as e:
        raise click.ClickException(str(e))
    _finish(result)


@pipeline.command()
@click.option("--max-ticks", type=click.IntRange(min=1), help="Upper bound on ticks (default from config)")
@click.option("--answers", help="Answers to the pending clarification questions")
@click.pass_obj
def run(obj, max_ticks, answers):
    """Tick until the pipeline completes, escalates or needs input."""
    orchestrator = _orchestrator(obj)
    try:
        results = orchestrator.run(max_ticks=max_ticks, answers=answers)
    except PipelineError as e:
        exit_with_error(orchestrator.emitter, e)
    except JsonStateError as e:
        raise click.ClickException(str(e))
    if results:
        _finish(results[-1])


@pipeline.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def reset(obj, yes):
    """Delete all artifacts and session markers and start a fresh state document."""
    orchestrator = _orchestrator(obj)
    if not yes:
        click.confirm(f"Delete all pipeline artifacts in {orchestrator.task_dir}?", abort=True)
    orchestrator.task_dir.mkdir(parents=True, exist_ok=True)
    state = orchestrator.reset()
    click.echo(f"Pipeline reset: {state.pipeline_id}")
