"""run-codex command: one Codex review with session resume."""

import click

from multi_ai_pipeline.cli.commands import exit_with_error
from multi_ai_pipeline.errors import PipelineError
from multi_ai_pipeline.providers.codex import CodexProvider
from multi_ai_pipeline.utils.events import EventEmitter


@click.command("run-codex")
@click.option("--type", "review_type", help='Review type: "plan" or "code"')
@click.option("--resume", is_flag=True, help="Resume the previous review session")
@click.option("--changes-summary", help="What changed since the previous review")
@click.option("--timeout", type=click.IntRange(min=1), help="Timeout in seconds")
@click.pass_obj
def run_codex(obj, review_type, resume, changes_summary, timeout):
    """Invoke Codex for a final-gate plan or code review."""
    emitter = EventEmitter()
    provider = CodexProvider(obj["config"], emitter)
    try:
        provider.run(review_type, force_resume=resume, changes_summary=changes_summary, timeout=timeout)
    except PipelineError as e:
        exit_with_error(emitter, e)
