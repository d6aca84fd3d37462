from __future__ import annotations

# Defaults; each CLI option can also be set through its GHFLOW_* variable.
WORKFLOWS_DIR = ".github/workflows"
DEFAULT_PY_WORKFLOW = "ghflow_workflow.py"
DEFAULT_EVENT = "pull_request"
COMPARE_REF = "origin/main"

# tail kept from step output when a step fails
OUTPUT_TAIL_CHARS = 4000
