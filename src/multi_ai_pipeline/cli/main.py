"""Main CLI entry point for the Multi-AI Pipeline."""

import logging
import sys

import click

from multi_ai_pipeline import __version__
from multi_ai_pipeline.cli.commands.pipeline import pipeline
from multi_ai_pipeline.cli.commands.run_claude import run_claude
from multi_ai_pipeline.cli.commands.run_codex import run_codex
from multi_ai_pipeline.cli.commands.state import state
from multi_ai_pipeline.cli.commands.validate_output import validate_output
from multi_ai_pipeline.config import load_config
from multi_ai_pipeline.errors import ConfigError

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


@click.group()
@click.version_option(__version__, prog_name="mai")
@click.option(
    "--project-root",
    default=".",
    type=click.Path(file_okay=False),
    help="Project root holding pipeline.config.json and the task directory",
)
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx, project_root, log_level):
    """Multi-AI Pipeline: drive Claude Code and Codex through a reviewed workflow."""
    try:
        config = load_config(project_root)
    except ConfigError as e:
        raise click.ClickException(e.message)

    level = (log_level or config.log_level).upper()
    # stdout carries the JSON event stream; logs go to stderr
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT, stream=sys.stderr)
    ctx.obj = {"config": config}


cli.add_command(run_claude)
cli.add_command(run_codex)
cli.add_command(validate_output)
cli.add_command(state)
cli.add_command(pipeline)


if __name__ == "__main__":
    cli()
