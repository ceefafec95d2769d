"""Load runnable task definitions from `.predeploy/tasks.yaml`.

A folder's tasks file looks like::

    tasks:
      - label: build
        command: npm run build
        depends_on: [lint]
      - label: lint
        source: npm
        command: npm run lint

Every task is scoped to the folder that declares it, and `depends_on` entries
resolve within that same folder, by bare label (`lint`) or qualified with the
task source (`npm: lint`).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from ..constants import DEFAULT_TASK_SOURCE, STATE_DIR_NAME, TASKS_FILE
from ..errors import TaskDefinitionError
from ..io_utils import _load_yaml_with_error
from ..models import TaskDescriptor


def tasks_path(folder: Path) -> Path:
    return folder / STATE_DIR_NAME / TASKS_FILE


def _has_cycle(adj: dict[str, list[str]], from_id: str, to_id: str) -> bool:
    """Return True if adding an edge from_id→to_id would create a cycle.

    Checks whether to_id can already reach from_id via existing edges.
    """
    visited: set[str] = set()
    stack = [to_id]
    while stack:
        node = stack.pop()
        if node == from_id:
            return True
        if node in visited:
            continue
        visited.add(node)
        stack.extend(adj.get(node, []))
    return False


def _find_label(tasks: list[TaskDescriptor], label: str) -> TaskDescriptor | None:
    """Match a `depends_on` entry by bare label or by `"<source>: <label>"`."""
    wanted = label.lower()
    for task in tasks:
        if task.name.lower() == wanted or task.qualified_name.lower() == wanted:
            return task
    return None


def _as_str_list(value: Any, *, field_name: str, label: str, path: Path) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise TaskDefinitionError(str(path), f"task {label!r}: {field_name} must be a string or list of strings")


def _parse_task(raw: Any, index: int, folder: Path, path: Path) -> TaskDescriptor:
    if not isinstance(raw, dict):
        raise TaskDefinitionError(str(path), f"tasks[{index}] must be a mapping")
    label = raw.get("label")
    if not isinstance(label, str) or not label.strip():
        raise TaskDefinitionError(str(path), f"tasks[{index}] is missing a label")
    label = label.strip()

    command = raw.get("command")
    if command is not None and not isinstance(command, str):
        raise TaskDefinitionError(str(path), f"task {label!r}: command must be a string")
    cwd = raw.get("cwd")
    if cwd is not None and not isinstance(cwd, str):
        raise TaskDefinitionError(str(path), f"task {label!r}: cwd must be a string")
    env = raw.get("env") or {}
    if not isinstance(env, dict):
        raise TaskDefinitionError(str(path), f"task {label!r}: env must be a mapping")
    source = raw.get("source") or DEFAULT_TASK_SOURCE

    return TaskDescriptor(
        name=label,
        scope_path=str(folder),
        source=str(source),
        command=command,
        cwd=cwd,
        env={str(k): str(v) for k, v in env.items()},
        depends_on=_as_str_list(raw.get("depends_on"), field_name="depends_on", label=label, path=path),
    )


def load_task_definitions(folder: Path) -> list[TaskDescriptor]:
    """Load the tasks declared by one workspace folder.

    Args:
        folder: Workspace folder root.

    Returns:
        Tasks in file order. A folder without a tasks file has no tasks.

    Raises:
        TaskDefinitionError: If the file is unreadable, a task is malformed,
            labels are duplicated, a dependency is unknown, or dependencies
            form a cycle.
    """
    folder = folder.expanduser().resolve()
    path = tasks_path(folder)
    data, err = _load_yaml_with_error(path, {})
    if err:
        raise TaskDefinitionError(str(path), err)
    raw_tasks = data.get("tasks") or []
    if not isinstance(raw_tasks, list):
        raise TaskDefinitionError(str(path), "tasks must be a list")

    tasks = [_parse_task(raw, index, folder, path) for index, raw in enumerate(raw_tasks)]

    labels: set[str] = set()
    for task in tasks:
        key = task.name.lower()
        if key in labels:
            raise TaskDefinitionError(str(path), f"duplicate task label {task.name!r}")
        labels.add(key)

    adj: dict[str, list[str]] = {}
    for task in tasks:
        for dep in task.depends_on:
            target = _find_label(tasks, dep)
            if target is None:
                raise TaskDefinitionError(str(path), f"task {task.name!r} depends on unknown task {dep!r}")
            dep_key = target.name.lower()
            if _has_cycle(adj, task.name.lower(), dep_key):
                raise TaskDefinitionError(str(path), f"dependency cycle through {task.name!r} and {dep!r}")
            adj.setdefault(task.name.lower(), []).append(dep_key)
    return tasks
