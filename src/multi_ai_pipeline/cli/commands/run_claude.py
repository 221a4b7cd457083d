"""run-claude command: one Claude Code invocation with output validation."""

from pathlib import Path

import click

from multi_ai_pipeline.cli.commands import exit_with_error
from multi_ai_pipeline.errors import PipelineError
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.providers.claude_code import ClaudeCodeProvider
from multi_ai_pipeline.services.validation_service import kind_for_artifact
from multi_ai_pipeline.utils.events import EventEmitter


@click.command("run-claude")
@click.option("--instructions", help="Task instructions passed on stdin")
@click.option("--output", type=click.Path(dir_okay=False), help="File Claude must write")
@click.option("--agent-file", type=click.Path(dir_okay=False), help="Agent markdown prepended to the prompt")
@click.option("--model", help="Model name (default from config)")
@click.option("--timeout", type=click.IntRange(min=1), help="Timeout in seconds")
@click.option("--allowed-tools", help="Comma-separated tool list")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in DocumentKind]),
    help="Document kind of the output (inferred from well-known file names)",
)
@click.pass_obj
def run_claude(obj, instructions, output, agent_file, model, timeout, allowed_tools, kind):
    """Invoke Claude Code once and validate its output file."""
    config = obj["config"]
    emitter = EventEmitter()
    provider = ClaudeCodeProvider(config, emitter)

    output_path = Path(output) if output else None
    expected_kind = DocumentKind(kind) if kind else (kind_for_artifact(output_path) if output_path else None)

    try:
        provider.run(
            instructions or "",
            output=output_path,
            agent_file=Path(agent_file) if agent_file else None,
            model=model,
            timeout=timeout,
            allowed_tools=allowed_tools,
            expected_kind=expected_kind,
        )
    except PipelineError as e:
        exit_with_error(emitter, e)
