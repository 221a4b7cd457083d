"""Shared helpers for the ``mai`` subcommands."""

import logging
from typing import NoReturn

import click

from multi_ai_pipeline.errors import PipelineError
from multi_ai_pipeline.utils.events import EventEmitter

logger = logging.getLogger(__name__)


def exit_with_error(emitter: EventEmitter, error: PipelineError) -> NoReturn:
    """Print the final error event and exit with the error's code."""
    logger.error(f"{error.error_type} ({error.phase}): {error.message}")
    emitter.write(error.to_event())
    click.get_current_context().exit(error.exit_code)
