from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

from predeploy_runner.models import CompletionEvent, TaskDescriptor
from predeploy_runner.predeploy import ActionContext
from predeploy_runner.tasks.events import Subscription, TaskEventStream


class FakeRegistry:
    """In-memory registry; `on_execute` decides which events an execution fires."""

    def __init__(
        self,
        tasks: Sequence[TaskDescriptor] = (),
        on_execute: Optional[Callable[[TaskDescriptor], list[CompletionEvent]]] = None,
    ) -> None:
        self.tasks = list(tasks)
        self.events = TaskEventStream()
        self.executed: list[TaskDescriptor] = []
        self.list_calls = 0
        self.on_execute = on_execute or (lambda task: [CompletionEvent(task=task, exit_code=0)])

    def list_tasks(self) -> list[TaskDescriptor]:
        self.list_calls += 1
        return list(self.tasks)

    def execute_task(self, task: TaskDescriptor) -> None:
        self.executed.append(task)
        for event in self.on_execute(task):
            self.events.fire(event)

    def on_task_process_end(self, listener) -> Subscription:
        return self.events.on_task_process_end(listener)


class FakeSettings:
    def __init__(self, values: Optional[dict[str, str]] = None) -> None:
        self.values = dict(values or {})
        self.calls: list[tuple[str, str]] = []

    def get(self, key: str, scope_path: str) -> Optional[str]:
        self.calls.append((key, scope_path))
        return self.values.get(key)


class RecordingOutput:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def append_log(self, message: str) -> None:
        self.lines.append(message)


class RecordingProgress:
    def __init__(self) -> None:
        self.titles: list[str] = []
        self.active = False

    def with_progress(self, title, work):
        self.titles.append(title)
        self.active = True
        try:
            return work()
        finally:
            self.active = False


class ScriptedPrompter:
    def __init__(self, answer: Optional[str] = None) -> None:
        self.answer = answer
        self.calls: list[tuple[str, list[str], bool]] = []

    def show_error_message(self, message, items, *, modal=True):
        self.calls.append((message, list(items), modal))
        return self.answer


class CountingOpener:
    def __init__(self) -> None:
        self.count = 0

    def open_settings(self) -> None:
        self.count += 1


@pytest.fixture
def project(tmp_path: Path) -> Path:
    proj = tmp_path / "proj"
    (proj / "sub").mkdir(parents=True)
    return proj


@pytest.fixture
def make_context():
    def _make(
        registry: FakeRegistry,
        task_name: Optional[str] = None,
        answer: Optional[str] = None,
    ) -> ActionContext:
        values = {"preDeployTask": task_name} if task_name is not None else {}
        return ActionContext(
            registry=registry,
            settings=FakeSettings(values),
            output=RecordingOutput(),
            progress=RecordingProgress(),
            prompter=ScriptedPrompter(answer),
            settings_opener=CountingOpener(),
        )

    return _make
