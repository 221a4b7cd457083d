"""JSON state accessor: dotted-path reads, atomic whole-document updates and merges."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_MISSING = object()


class JsonStateError(Exception):
    """Base class for JSON state failures."""

    def __init__(self, message: str, path: PathLike):
        super().__init__(message)
        self.path = Path(path)


class StateFileMissing(JsonStateError):
    pass


class StateFileUnreadable(JsonStateError):
    pass


class StateFileMalformed(JsonStateError):
    pass


class FieldNotFoundError(JsonStateError):
    def __init__(self, path: PathLike, field_path: str):
        super().__init__(f"Field '{field_path}' not found in {path}", path)
        self.field_path = field_path


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def load_json(path: PathLike) -> Any:
    """Load and parse a JSON file, raising a distinct error per failure kind."""
    p = Path(path)
    if not p.is_file():
        raise StateFileMissing(f"File not found: {p}", p)
    try:
        content = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StateFileUnreadable(f"Cannot read {p}: {e}", p)
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise StateFileMalformed(f"Invalid JSON in {p}: {e}", p)


def write_json_atomic(path: PathLike, data: Any) -> None:
    """Write data to a temporary sibling, fsync it, then rename it over the target.

    A reader never observes a partially written document: it sees either the old
    file or the new one.
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=p.parent, prefix=f".{p.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, p)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def _split(field_path: str) -> List[str]:
    parts = [part for part in field_path.split(".") if part]
    if not parts:
        raise ValueError(f"Empty field path: '{field_path}'")
    return parts


def get_json_value(data: Any, field_path: str, default: Any = None) -> Any:
    """Retrieve a value from nested JSON using a dotted key (e.g. 'iterations.plan_review_sonnet')."""
    obj = data
    for part in _split(field_path):
        if not isinstance(obj, dict) or part not in obj:
            return default
        obj = obj[part]
    return obj


def get_value(path: PathLike, field_path: str, default: Any = _MISSING) -> Any:
    """Load the document at ``path`` and resolve ``field_path``.

    Returns ``default`` if any segment is missing. Without a default, a path that
    does not resolve raises FieldNotFoundError.
    """
    data = load_json(path)
    value = get_json_value(data, field_path, _MISSING)
    if value is _MISSING:
        if default is _MISSING:
            raise FieldNotFoundError(path, field_path)
        return default
    return value


class AssignmentOp(str, Enum):
    """Mutation kinds supported by set_values."""

    STRING = "string"
    LITERAL = "literal"
    TIMESTAMP = "timestamp"
    INCREMENT = "increment"
    DELETE = "delete"


@dataclass(frozen=True)
class Assignment:
    op: AssignmentOp
    field_path: str
    value: Any = None


def parse_assignment(expr: str) -> Assignment:
    """Parse the CLI assignment syntax.

    ``key=text`` string, ``key:=<json>`` typed literal, ``key@now`` timestamp,
    ``key++`` increment, ``-key`` delete.
    """
    # Values may contain anything, so the first "=" always splits key from value
    if "=" in expr:
        key, raw = expr.split("=", 1)
        if key.endswith(":"):
            key = key[:-1]
            try:
                return Assignment(AssignmentOp.LITERAL, key, json.loads(raw))
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON literal for '{key}': {e}")
        return Assignment(AssignmentOp.STRING, key, raw)
    if expr.startswith("-") and len(expr) > 1:
        return Assignment(AssignmentOp.DELETE, expr[1:])
    if expr.endswith("++") and len(expr) > 2:
        return Assignment(AssignmentOp.INCREMENT, expr[:-2])
    if expr.endswith("@now") and len(expr) > 4:
        return Assignment(AssignmentOp.TIMESTAMP, expr[:-4])
    raise ValueError(f"Invalid assignment: '{expr}'")


def apply_assignment(data: Dict[str, Any], assignment: Assignment) -> None:
    """Apply one assignment to ``data`` in place."""
    parts = _split(assignment.field_path)
    parent = data
    for part in parts[:-1]:
        child = parent.get(part)
        if not isinstance(child, dict):
            if assignment.op is AssignmentOp.DELETE:
                return
            child = {}
            parent[part] = child
        parent = child
    leaf = parts[-1]

    if assignment.op is AssignmentOp.DELETE:
        parent.pop(leaf, None)
    elif assignment.op is AssignmentOp.TIMESTAMP:
        parent[leaf] = utc_now()
    elif assignment.op is AssignmentOp.INCREMENT:
        current = parent.get(leaf) or 0
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise ValueError(f"Cannot increment non-numeric field '{assignment.field_path}'")
        parent[leaf] = current + 1
    elif assignment.op is AssignmentOp.STRING:
        parent[leaf] = str(assignment.value)
    else:
        parent[leaf] = assignment.value


def set_values(path: PathLike, assignments: Iterable[Assignment], create: bool = False) -> Dict[str, Any]:
    """Apply all assignments as one transformation and atomically replace the file.

    With ``create=True`` a missing file starts from an empty document.
    Returns the written document.
    """
    try:
        data = load_json(path)
    except StateFileMissing:
        if not create:
            raise
        data = {}
    if not isinstance(data, dict):
        raise StateFileMalformed(f"Top-level JSON value in {path} is not an object", path)

    for assignment in assignments:
        apply_assignment(data, assignment)

    write_json_atomic(path, data)
    return data


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a new dict with ``override`` merged into ``base``; later keys win."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_documents(paths: Iterable[PathLike], skip_missing: bool = True) -> Dict[str, Any]:
    """Deep-merge several JSON documents, later documents overriding earlier ones."""
    merged: Dict[str, Any] = {}
    for path in paths:
        try:
            data = load_json(path)
        except StateFileMissing:
            if skip_missing:
                logger.debug(f"Skipping missing document {path}")
                continue
            raise
        if not isinstance(data, dict):
            raise StateFileMalformed(f"Top-level JSON value in {path} is not an object", path)
        merged = deep_merge(merged, data)
    return merged


def is_valid_json(path: PathLike) -> bool:
    """True iff the file exists, is readable and parses as JSON."""
    try:
        load_json(path)
    except JsonStateError:
        return False
    return True
