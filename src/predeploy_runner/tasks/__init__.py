"""Task definitions, the process-end event stream, and task registries."""

from .definitions import load_task_definitions, tasks_path
from .events import Subscription, TaskEventStream
from .registry import LocalTaskRegistry, TaskRegistry, discover_workspace_folders

__all__ = [
    "LocalTaskRegistry",
    "Subscription",
    "TaskEventStream",
    "TaskRegistry",
    "discover_workspace_folders",
    "load_task_definitions",
    "tasks_path",
]
