"""state command group: dotted-path access to JSON state documents."""

import json
from pathlib import Path

import click

from multi_ai_pipeline.constants import STATE_FILE
from multi_ai_pipeline.utils.json_state import (
    JsonStateError,
    get_value,
    is_valid_json,
    merge_documents,
    parse_assignment,
    set_values,
    write_json_atomic,
)


def _state_file(obj, file) -> Path:
    return Path(file) if file else obj["config"].task_path / STATE_FILE


def _render(value) -> str:
    return value if isinstance(value, str) else json.dumps(value)


@click.group()
def state():
    """Read, update, merge and validate JSON state documents."""


@state.command("get")
@click.argument("field")
@click.option("--file", type=click.Path(dir_okay=False), help="Document to read (default: the state document)")
@click.option("--default", "default", default=None, help="Value printed when the field is missing")
@click.pass_obj
def get(obj, field, file, default):
    """Print the value at a dot-separated FIELD path."""
    path = _state_file(obj, file)
    try:
        if default is None:
            value = get_value(path, field)
        else:
            value = get_value(path, field, default)
    except JsonStateError as e:
        raise click.ClickException(str(e))
    click.echo(_render(value))


# "-key" deletes a field, so unknown dash-prefixed tokens are assignments, not options
@state.command("set", context_settings={"ignore_unknown_options": True})
@click.argument("assignments", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--file", type=click.Path(dir_okay=False), help="Document to update (default: the state document)")
@click.option("--create", is_flag=True, help="Start from an empty document if the file is missing")
@click.pass_obj
def set_(obj, assignments, file, create):
    """Apply ASSIGNMENTS atomically.

    Syntax: key=text, key:=<json>, key@now, key++, -key.
    """
    path = _state_file(obj, file)
    try:
        parsed = [parse_assignment(expr) for expr in assignments]
        set_values(path, parsed, create=create)
    except (JsonStateError, ValueError) as e:
        raise click.ClickException(str(e))


@state.command("merge")
@click.argument("paths", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option("--output", type=click.Path(dir_okay=False), help="Write the merged document here")
def merge(paths, output):
    """Deep-merge PATHS; later documents win."""
    try:
        merged = merge_documents(paths)
    except JsonStateError as e:
        raise click.ClickException(str(e))
    if output:
        write_json_atomic(output, merged)
    else:
        click.echo(json.dumps(merged, indent=2))


@state.command("validate")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
@click.pass_obj
def validate(obj, path):
    """Exit 0 if PATH (default: the state document) is valid JSON, 1 otherwise."""
    target = _state_file(obj, path)
    if not is_valid_json(target):
        click.echo(f"Invalid JSON: {target}", err=True)
        click.get_current_context().exit(1)
    click.echo(f"Valid JSON: {target}")
