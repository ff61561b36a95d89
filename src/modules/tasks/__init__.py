"""Tasks module: filtering, counting, sorting and reconciling personal tasks."""

from src.modules.tasks.aggregation import count_in_memory, count_statuses
from src.modules.tasks.due_dates import apply_due_date_filters, is_due_soon, is_overdue, matches_due_filters
from src.modules.tasks.filters import build_filter_query, task_matches
from src.modules.tasks.orchestrator import BoardView, TaskBoard
from src.modules.tasks.reconciliation import RefreshTokens, TaskCollection
from src.modules.tasks.sorting import default_column_sorts, sort_columns, sort_tasks
from src.modules.tasks.sources import HttpTaskSource, ServiceTaskSource, TaskSource


__all__ = [
    "BoardView",
    "HttpTaskSource",
    "RefreshTokens",
    "ServiceTaskSource",
    "TaskBoard",
    "TaskCollection",
    "TaskSource",
    "apply_due_date_filters",
    "build_filter_query",
    "count_in_memory",
    "count_statuses",
    "default_column_sorts",
    "is_due_soon",
    "is_overdue",
    "matches_due_filters",
    "sort_columns",
    "sort_tasks",
    "task_matches",
]
