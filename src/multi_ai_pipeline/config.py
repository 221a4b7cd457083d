"""Pipeline configuration.

Precedence (highest to lowest): env vars > pipeline.config.local.json >
pipeline.config.json > hardcoded defaults. Empty env vars are treated as unset.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from multi_ai_pipeline import constants
from multi_ai_pipeline.errors import ConfigError
from multi_ai_pipeline.utils.json_state import JsonStateError, get_json_value, merge_documents

logger = logging.getLogger(__name__)

VALID_TOP_LEVEL_KEYS = frozenset({"paths", "limits", "policy", "claude", "codex", "log_level"})
CODE_REVIEW_REJECTED_POLICIES = frozenset({"rework", "escalate"})
LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR"})

# (field_name, json_dotted_path, env_var_name, hardcoded_default, value_type)
_CONFIG_KEYS: List[Tuple[str, str, str, Any, type]] = [
    ("task_dir",                        "paths.task_dir",                          "TASK_DIR",                      constants.TASK_DIR,                  str),
    ("agents_dir",                      "paths.agents_dir",                        "PIPELINE_AGENTS_DIR",           constants.DEFAULT_AGENTS_DIR,        str),
    ("standards_file",                  "paths.standards",                         "PIPELINE_STANDARDS",            constants.DEFAULT_STANDARDS_FILE,    str),
    ("schemas_dir",                     "paths.schemas_dir",                       "PIPELINE_SCHEMAS_DIR",          constants.DEFAULT_SCHEMAS_DIR,       str),
    ("max_iterations",                  "limits.max_iterations",                   "PIPELINE_MAX_ITERATIONS",       constants.MAX_ITERATIONS,            int),
    ("clarifications_count_toward_cap", "limits.clarifications_count_toward_cap",  "PIPELINE_CLARIFICATIONS_COUNT", False,                               bool),
    ("max_ticks",                       "limits.max_ticks",                        "PIPELINE_MAX_TICKS",            constants.MAX_TICKS,                 int),
    ("code_review_rejected_policy",     "policy.code_review_rejected",             "PIPELINE_CODE_REJECTED_POLICY", "rework",                            str),
    ("claude_executable",               "claude.executable",                       "CLAUDE_BIN",                    constants.DEFAULT_CLAUDE_EXECUTABLE, str),
    ("claude_model",                    "claude.model",                            "CLAUDE_MODEL",                  constants.DEFAULT_CLAUDE_MODEL,      str),
    ("claude_timeout",                  "claude.timeout",                          "CLAUDE_TIMEOUT",                constants.DEFAULT_CLAUDE_TIMEOUT,    int),
    ("claude_allowed_tools",            "claude.allowed_tools",                    "CLAUDE_ALLOWED_TOOLS",          constants.DEFAULT_CLAUDE_TOOLS,      str),
    ("codex_executable",                "codex.executable",                        "CODEX_BIN",                     constants.DEFAULT_CODEX_EXECUTABLE,  str),
    ("codex_timeout",                   "codex.timeout",                           "CODEX_TIMEOUT",                 constants.DEFAULT_CODEX_TIMEOUT,     int),
    ("log_level",                       "log_level",                               "PIPELINE_LOG_LEVEL",            "INFO",                              str),
]


class PipelineConfig(BaseModel):
    """Resolved configuration; paths are relative to the project root unless absolute."""

    project_root: Path = Path(".")
    task_dir: str = constants.TASK_DIR
    agents_dir: str = constants.DEFAULT_AGENTS_DIR
    standards_file: str = constants.DEFAULT_STANDARDS_FILE
    schemas_dir: str = constants.DEFAULT_SCHEMAS_DIR
    max_iterations: int = constants.MAX_ITERATIONS
    clarifications_count_toward_cap: bool = False
    max_ticks: int = constants.MAX_TICKS
    code_review_rejected_policy: str = "rework"
    claude_executable: str = constants.DEFAULT_CLAUDE_EXECUTABLE
    claude_model: str = constants.DEFAULT_CLAUDE_MODEL
    claude_timeout: int = constants.DEFAULT_CLAUDE_TIMEOUT
    claude_allowed_tools: str = constants.DEFAULT_CLAUDE_TOOLS
    codex_executable: str = constants.DEFAULT_CODEX_EXECUTABLE
    codex_timeout: int = constants.DEFAULT_CODEX_TIMEOUT
    log_level: str = "INFO"

    def resolve(self, relative: Union[str, Path]) -> Path:
        p = Path(relative)
        return p if p.is_absolute() else self.project_root / p

    @property
    def task_path(self) -> Path:
        return self.resolve(self.task_dir)

    @property
    def agents_path(self) -> Path:
        return self.resolve(self.agents_dir)

    @property
    def standards_path(self) -> Path:
        return self.resolve(self.standards_file)

    @property
    def schemas_path(self) -> Path:
        return self.resolve(self.schemas_dir)


_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off"})


def _parse_env(env_var: str, typ: type) -> Optional[Any]:
    """Read env var; return None if unset or empty string (treated as unset)."""
    raw = os.environ.get(env_var)
    if raw is None or raw == "":
        return None
    if typ is bool:
        return raw.strip().lower() in _TRUE_STRINGS
    if typ is int:
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"Environment variable {env_var} must be an integer, got '{raw}'")
    return raw


def _coerce(json_path: str, value: Any, typ: type) -> Any:
    if typ is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise ConfigError(f"Config key '{json_path}' must be a boolean, got {value!r}")
    if typ is int:
        if isinstance(value, bool):
            raise ConfigError(f"Config key '{json_path}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Config key '{json_path}' must be an integer, got {value!r}")
    return str(value)


def load_config_data(project_root: Union[str, Path] = ".") -> Dict[str, Any]:
    """Base config document with the optional local override layered on top."""
    root = Path(project_root)
    try:
        data = merge_documents(
            [root / constants.CONFIG_FILE, root / constants.LOCAL_CONFIG_FILE], skip_missing=True
        )
    except JsonStateError as e:
        raise ConfigError(str(e))

    unknown = set(data.keys()) - VALID_TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
    return data


def load_config(project_root: Union[str, Path] = ".") -> PipelineConfig:
    """Load config from optional JSON files + env vars + hardcoded defaults."""
    json_data = load_config_data(project_root)

    values: Dict[str, Any] = {"project_root": Path(project_root)}
    for field, json_path, env_var, default, typ in _CONFIG_KEYS:
        value = default
        json_val = get_json_value(json_data, json_path)
        if json_val is not None:
            value = _coerce(json_path, json_val, typ)
        env_val = _parse_env(env_var, typ)
        if env_val is not None:
            value = env_val
        values[field] = value

    values["log_level"] = str(values["log_level"]).upper()
    if values["log_level"] not in LOG_LEVELS:
        raise ConfigError(f"Invalid log_level '{values['log_level']}'. Valid: {', '.join(sorted(LOG_LEVELS))}")

    policy = values["code_review_rejected_policy"]
    if policy not in CODE_REVIEW_REJECTED_POLICIES:
        raise ConfigError(
            f"Invalid policy.code_review_rejected '{policy}'. "
            f"Valid: {', '.join(sorted(CODE_REVIEW_REJECTED_POLICIES))}"
        )

    for field in ("max_iterations", "max_ticks", "claude_timeout", "codex_timeout"):
        if values[field] <= 0:
            raise ConfigError(f"{field} must be positive, got {values[field]}")

    return PipelineConfig(**values)
