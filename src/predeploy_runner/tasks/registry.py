"""Task registries: enumerate tasks, run them, report process ends."""

from __future__ import annotations

import os
import subprocess
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Protocol, Sequence

from loguru import logger

from ..constants import DEFAULT_MAX_TASK_WORKERS, MAX_OUTPUT_LINE_CHARS
from ..errors import TaskDefinitionError
from ..models import CompletionEvent, TaskDescriptor
from ..ui import OutputChannel
from .definitions import _find_label, load_task_definitions, tasks_path
from .events import Subscription, TaskEndListener, TaskEventStream


class TaskRegistry(Protocol):
    def list_tasks(self) -> list[TaskDescriptor]:
        ...

    def execute_task(self, task: TaskDescriptor) -> None:
        ...

    def on_task_process_end(self, listener: TaskEndListener) -> Subscription:
        ...


def discover_workspace_folders(path: Path) -> list[Path]:
    """Return `path` and its ancestors that declare a tasks file, nearest first."""
    start = path.expanduser().resolve()
    return [folder for folder in [start, *start.parents] if tasks_path(folder).exists()]


class LocalTaskRegistry:
    """Run shell tasks declared in workspace folders.

    `execute_task` returns immediately; the task and its dependencies run in
    order on a worker thread. Each process end is fired on `events`. When a
    dependency fails, the tasks that depend on it are not started.
    """

    def __init__(
        self,
        workspace_folders: Sequence[Path],
        *,
        events: Optional[TaskEventStream] = None,
        output: Optional[OutputChannel] = None,
        max_workers: int = DEFAULT_MAX_TASK_WORKERS,
    ) -> None:
        self.workspace_folders = [Path(folder).expanduser().resolve() for folder in workspace_folders]
        self.events = events or TaskEventStream()
        self.output = output
        self.max_workers = max_workers
        self._tasks: Optional[list[TaskDescriptor]] = None
        self._pool: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> "LocalTaskRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self, wait: bool = True) -> None:
        with self._lock:
            pool = self._pool
            self._pool = None
        if pool is not None:
            pool.shutdown(wait=wait)

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="predeploy-task")
            return self._pool

    def reload(self) -> list[TaskDescriptor]:
        tasks: list[TaskDescriptor] = []
        for folder in self.workspace_folders:
            tasks.extend(load_task_definitions(folder))
        with self._lock:
            self._tasks = tasks
        logger.debug("Loaded {} task(s) from {} folder(s)", len(tasks), len(self.workspace_folders))
        return list(tasks)

    def list_tasks(self) -> list[TaskDescriptor]:
        with self._lock:
            tasks = self._tasks
        if tasks is None:
            return self.reload()
        return list(tasks)

    def on_task_process_end(self, listener: TaskEndListener) -> Subscription:
        return self.events.on_task_process_end(listener)

    def _find_dependency(self, task: TaskDescriptor, label: str) -> TaskDescriptor:
        in_scope = [candidate for candidate in self.list_tasks() if candidate.scope_path == task.scope_path]
        found = _find_label(in_scope, label)
        if found is not None:
            return found
        raise TaskDefinitionError(str(task.scope_path), f"task {task.name!r} depends on unknown task {label!r}")

    def dependency_chain(self, task: TaskDescriptor) -> list[TaskDescriptor]:
        """Return the tasks to run for `task`, dependencies first, each once."""
        ordered: list[TaskDescriptor] = []
        seen: set[int] = set()

        def visit(current: TaskDescriptor, path: tuple[int, ...]) -> None:
            if id(current) in path:
                raise TaskDefinitionError(str(current.scope_path), f"dependency cycle through {current.name!r}")
            if id(current) in seen:
                return
            for label in current.depends_on:
                visit(self._find_dependency(current, label), (*path, id(current)))
            seen.add(id(current))
            ordered.append(current)

        visit(task, ())
        return ordered

    def execute_task(self, task: TaskDescriptor) -> None:
        chain = self.dependency_chain(task)
        future = self._get_pool().submit(self._run_chain, chain)
        future.add_done_callback(self._log_unexpected_error)

    def _log_unexpected_error(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Task execution crashed")

    def _run_chain(self, chain: list[TaskDescriptor]) -> int:
        exit_code = 0
        for task in chain:
            exit_code = self._run_process(task)
            if exit_code != 0:
                if task is not chain[-1]:
                    logger.warning(
                        "Task {!r} exited with {}; not starting {!r}",
                        task.name,
                        exit_code,
                        chain[-1].name,
                    )
                break
        return exit_code

    def _append(self, message: str) -> None:
        if self.output is not None:
            self.output.append_log(message)

    def _run_process(self, task: TaskDescriptor) -> int:
        exit_code = 1
        try:
            exit_code = self._launch(task)
        except OSError as exc:
            self._append(f"Failed to start task {task.qualified_name}: {exc}")
        except Exception as exc:
            logger.opt(exception=exc).error("Task {!r} crashed", task.name)
            self._append(f"Task {task.qualified_name} failed: {exc}")
        finally:
            # Every started task reports exactly once.
            self.events.fire(CompletionEvent(task=task, exit_code=exit_code))
        return exit_code

    def _launch(self, task: TaskDescriptor) -> int:
        if not task.command:
            return 0
        base = Path(task.scope_path) if task.scope_path else Path.cwd()
        cwd = base / task.cwd if task.cwd else base
        env = {**os.environ, **task.env}
        self._append(f"> Executing task: {task.qualified_name} <")
        logger.debug("Running {!r} in {}: {}", task.name, cwd, task.command)
        proc = subprocess.Popen(
            task.command,
            shell=True,
            cwd=str(cwd),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
        )
        if proc.stdout is not None:
            with proc.stdout:
                for line in proc.stdout:
                    self._append(line.rstrip("\n")[:MAX_OUTPUT_LINE_CHARS])
        exit_code = proc.wait()
        self._append(f"> Task {task.qualified_name} exited with code {exit_code} <")
        return exit_code
