"""validate-output command."""

import click

from multi_ai_pipeline.cli.commands import exit_with_error
from multi_ai_pipeline.errors import OutputValidationError
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.services.validation_service import kind_for_artifact, validate_output as validate
from multi_ai_pipeline.utils.events import EventEmitter


@click.command("validate-output")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option(
    "--kind",
    type=click.Choice([k.value for k in DocumentKind]),
    help="Document kind (inferred from well-known file names)",
)
def validate_output(path, kind):
    """Check an agent output file without modifying it."""
    emitter = EventEmitter()
    expected_kind = DocumentKind(kind) if kind else kind_for_artifact(path)
    try:
        document = validate(path, expected_kind)
    except OutputValidationError as e:
        exit_with_error(emitter, e)
    emitter.emit(
        "valid",
        output_file=path,
        kind=expected_kind.value if expected_kind else None,
        status=document.get("status"),
    )
