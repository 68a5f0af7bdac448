"""Shared defaults for docflow."""

DEFAULT_CATEGORY = "General"
DEFAULT_TASK_TYPE = "manual"
DEFAULT_PAGE_SIZE = 20
DEFAULT_ANALYTICS_WINDOW_DAYS = 30

# Terminal marker written to ``current_state`` when an end node finishes.
COMPLETED_STATE = "completed"

# Upper bound on nodes visited by one traversal; guards decision cycles.
MAX_TRAVERSAL_STEPS = 1000
