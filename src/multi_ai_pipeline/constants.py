"""Constants for the Multi-AI Pipeline (MAI) application.

This module defines the file layout, stage names, limits and exit codes shared
across the MAI application.

The MAI application drives a feature-development workflow through three
external CLI-based AI agents (a planning agent, Claude Code and Codex) and
tracks progress with JSON artifact files under the task directory.
"""

# =============================================================================
# Task Directory Layout
# =============================================================================
# All pipeline artifacts live in this directory, relative to the project root.
# The file names below are a wire contract other tooling depends on.
TASK_DIR = ".task"

STATE_FILE = "state.json"
USER_STORY_FILE = "user-story.json"
PLAN_FILE = "plan-refined.json"
IMPL_RESULT_FILE = "impl-result.json"

PLAN_REVIEW_FILES = {
    "sonnet": "review-sonnet.json",
    "opus": "review-opus.json",
    "codex": "review-codex.json",
}
CODE_REVIEW_FILES = {
    "sonnet": "code-review-sonnet.json",
    "opus": "code-review-opus.json",
    "codex": "code-review-codex.json",
}

# Session markers are scoped by review type: .codex-session-plan / .codex-session-code
SESSION_MARKER_PREFIX = ".codex-session-"

# Error records written by the orchestrator (error-<timestamp>.json)
ERRORS_DIR = "errors"

# Captured child stderr, used for failure classification
CLAUDE_STDERR_LOG = "claude_stderr.log"
CODEX_STDERR_LOG = "codex_stderr.log"

# Files listed in the "Current Task State" section of Claude instructions
TASK_STATE_LISTING = [STATE_FILE, USER_STORY_FILE, PLAN_FILE, IMPL_RESULT_FILE]

# =============================================================================
# Stage Names
# =============================================================================
# Fixed total order; the first unmet stage is always the current one.
STAGE_REQUIREMENTS = "requirements"
STAGE_PLAN = "plan"
STAGE_IMPLEMENTATION = "implementation"

REVIEW_STAGES = [
    "plan_review_sonnet",
    "plan_review_opus",
    "plan_review_codex",
    "code_review_sonnet",
    "code_review_opus",
    "code_review_codex",
]

# Stages that own an iteration counter in state.json
COUNTED_STAGES = REVIEW_STAGES + [STAGE_IMPLEMENTATION]

# =============================================================================
# Limits and Defaults
# =============================================================================
# A stage's counter reaching this value forces escalation to a human
MAX_ITERATIONS = 10

# Upper bound on ticks for a single `mai pipeline run`
MAX_TICKS = 50

DEFAULT_CLAUDE_EXECUTABLE = "claude"
DEFAULT_CLAUDE_MODEL = "sonnet"
DEFAULT_CLAUDE_TIMEOUT = 600  # seconds
DEFAULT_CLAUDE_TOOLS = "Read,Write,Edit,Glob,Grep,Bash"

DEFAULT_CODEX_EXECUTABLE = "codex"
DEFAULT_CODEX_TIMEOUT = 1200  # seconds

# Version probe used for the CLI check before any invocation
VERSION_CHECK_TIMEOUT = 30

# =============================================================================
# Project Files
# =============================================================================
CONFIG_FILE = "pipeline.config.json"
LOCAL_CONFIG_FILE = "pipeline.config.local.json"

DEFAULT_AGENTS_DIR = ".multi-ai-pipeline/agents"
DEFAULT_STANDARDS_FILE = ".multi-ai-pipeline/docs/standards.md"
DEFAULT_SCHEMAS_DIR = ".multi-ai-pipeline/docs/schemas"

PLAN_REVIEW_SCHEMA = "plan-review.schema.json"
CODE_REVIEW_SCHEMA = "review-result.schema.json"

# =============================================================================
# Exit Codes
# =============================================================================
# The complete and stable signal set of the wrapper commands
EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
EXIT_CLI_ERROR = 2
EXIT_TIMEOUT = 3
