"""Run the configured pre-deploy task and decide whether the deploy proceeds.

The flow for one deploy is: resolve the configured task name against the
tasks the registry knows, execute it under a progress indicator, wait for a
completion signal, then turn the outcome into control flow. Only
`run_pre_deploy_task` and `handle_failed_pre_deploy_task` raise; everything
before them reports failures as a `TaskResult`.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from loguru import logger

from .config import SettingsStore, get_pre_deploy_task, qualified_key
from .constants import DEPLOY_ANYWAY_TITLE, OPEN_SETTINGS_TITLE, PRE_DEPLOY_TASK_KEY
from .errors import PreDeployTaskNotFoundError, UserCancelledError
from .models import (
    SERVER_BUILD_SCM_TYPES,
    CompletionEvent,
    PreDeployResponse,
    ScmType,
    TaskDescriptor,
    TaskResult,
)
from .paths import is_same_or_ancestor
from .tasks.events import Subscription
from .tasks.registry import TaskRegistry
from .ui import OutputChannel, ProgressReporter, Prompter, SettingsOpener

_SOURCE_PREFIX_RE = re.compile(r"^[^:]*:\s*")


@dataclass
class ActionContext:
    """Collaborators and telemetry for one deploy invocation."""

    registry: TaskRegistry
    settings: SettingsStore
    output: OutputChannel
    progress: ProgressReporter
    prompter: Prompter
    settings_opener: SettingsOpener
    telemetry: dict[str, str] = field(default_factory=dict)


def strip_task_source(name: str) -> str:
    """Drop a leading `"<source>: "` namespace, e.g. `"func: host start"` -> `"host start"`."""
    return _SOURCE_PREFIX_RE.sub("", name, count=1)


def is_scope_equal(task: TaskDescriptor, deploy_fs_path: str) -> bool:
    """True when the task belongs to the deploy path's folder or one of its ancestors."""
    return task.scope_path is not None and is_same_or_ancestor(task.scope_path, deploy_fs_path)


def is_task_equal(expected_name: str, expected_path: str, task: TaskDescriptor) -> bool:
    return expected_name.lower() == task.name.lower() and is_scope_equal(task, expected_path)


def find_pre_deploy_task(
    task_name: str,
    deploy_fs_path: str,
    tasks: Iterable[TaskDescriptor],
) -> Optional[TaskDescriptor]:
    """Find the task to run for a configured name.

    An exact (case-insensitive) name match wins. Otherwise names are compared
    with any `"<source>: "` prefix removed from both sides, so the setting
    `"func: extensions install"` finds a task named `"extensions install"` and
    vice versa. The first match in registry order is returned.
    """
    tasks = list(tasks)
    for task in tasks:
        if is_task_equal(task_name, deploy_fs_path, task):
            return task

    bare_name = strip_task_source(task_name)
    for task in tasks:
        if is_task_equal(bare_name, deploy_fs_path, task):
            return task
        if strip_task_source(task.name).lower() == bare_name.lower() and is_scope_equal(task, deploy_fs_path):
            return task
    return None


class PreDeployTaskWatcher:
    """Wait for the first completion event that ends a pre-deploy task.

    A failing task in the deploy path's scope ends the wait (dependencies of
    the pre-deploy task report failures this way, and the pre-deploy task
    itself then never runs). The launched task ending, with any exit code,
    also ends the wait. Anything else is ignored.

    Events may be delivered from another thread. The wait resolves exactly
    once and unsubscribes as soon as it does.
    """

    def __init__(self, task: TaskDescriptor, deploy_fs_path: str) -> None:
        self.task = task
        self.deploy_fs_path = deploy_fs_path
        self._result: Optional[TaskResult] = None
        self._subscription: Optional[Subscription] = None
        self._lock = threading.Lock()
        self._done = threading.Event()

    def attach(self, registry: TaskRegistry) -> "PreDeployTaskWatcher":
        subscription = registry.on_task_process_end(self.handle_event)
        with self._lock:
            self._subscription = subscription
            resolved = self._result is not None
        if resolved:
            subscription.dispose()
        return self

    def handle_event(self, event: CompletionEvent) -> None:
        if is_scope_equal(event.task, self.deploy_fs_path) and event.exit_code != 0:
            reason = "failed"
        elif event.task is self.task:
            reason = "completed"
        else:
            return

        with self._lock:
            if self._result is not None:
                return
            self._result = TaskResult(task_name=event.task.name, exit_code=event.exit_code)
            subscription = self._subscription
        logger.debug(
            "Pre-deploy wait ended: task {!r} {} with exit code {} at {}",
            event.task.name,
            reason,
            event.exit_code,
            event.ended_at,
        )
        if subscription is not None:
            subscription.dispose()
        self._done.set()

    @property
    def result(self) -> Optional[TaskResult]:
        return self._result

    def wait(self, timeout: Optional[float] = None) -> Optional[TaskResult]:
        """Block until resolved. Returns None only if `timeout` elapses first."""
        if not self._done.wait(timeout):
            return None
        return self._result

    def dispose(self) -> None:
        with self._lock:
            subscription = self._subscription
        if subscription is not None:
            subscription.dispose()


def _scm_value(scm_type: Union[ScmType, str, None]) -> Optional[str]:
    if isinstance(scm_type, ScmType):
        return scm_type.value
    return scm_type


def try_run_pre_deploy_task(
    context: ActionContext,
    deploy_fs_path: str,
    scm_type: Union[ScmType, str, None],
) -> TaskResult:
    """Resolve, run and wait for the pre-deploy task without raising on its outcome.

    Args:
        context: Collaborators and telemetry for this deploy.
        deploy_fs_path: Folder being deployed.
        scm_type: Source-control mode of the deploy target.

    Returns:
        A `TaskResult`: no name when none is configured, `failed_to_find_task`
        when the name matches nothing, otherwise the exit code of the task that
        ended the wait.
    """
    task_name = get_pre_deploy_task(context.settings, deploy_fs_path) or None
    context.telemetry["hasPreDeployTask"] = str(bool(task_name)).lower()

    result = TaskResult(task_name=task_name)
    if not task_name:
        return result

    if _scm_value(scm_type) in SERVER_BUILD_SCM_TYPES:
        # The server-side build runs its own steps for these deploys.
        context.output.append_log(f'WARNING: Ignoring preDeployTask "{task_name}" for non-zip deploy.')
        return result

    task = find_pre_deploy_task(task_name, deploy_fs_path, context.registry.list_tasks())
    if task is None:
        logger.info("No task matches preDeployTask {!r} for {}", task_name, deploy_fs_path)
        result.failed_to_find_task = True
        return result

    def _run_and_wait() -> TaskResult:
        watcher = PreDeployTaskWatcher(task, deploy_fs_path).attach(context.registry)
        try:
            context.registry.execute_task(task)
            finished = watcher.wait()
        finally:
            watcher.dispose()
        if finished is None:
            raise RuntimeError(f"wait for task {task.name!r} ended without a result")
        return finished

    result = context.progress.with_progress(f'Running preDeployTask "{task_name}"...', _run_and_wait)
    context.telemetry["preDeployTaskExitCode"] = str(result.exit_code)
    logger.info("preDeployTask {!r} finished: task={!r} exit_code={}", task_name, result.task_name, result.exit_code)
    return result


def handle_failed_pre_deploy_task(context: ActionContext, result: TaskResult) -> None:
    """Ask the operator what to do after a failed pre-deploy task.

    Raises:
        UserCancelledError: Unless the operator chooses "Deploy Anyway".
    """
    message = f'Errors exist after running preDeployTask "{result.task_name}". See task output for more info.'
    choice = context.prompter.show_error_message(message, [DEPLOY_ANYWAY_TITLE, OPEN_SETTINGS_TITLE], modal=True)
    if choice == DEPLOY_ANYWAY_TITLE:
        context.telemetry["preDeployTaskResponse"] = PreDeployResponse.DEPLOY_ANYWAY.value
        logger.warning("Deploying despite failed preDeployTask {!r}", result.task_name)
    elif choice == OPEN_SETTINGS_TITLE:
        context.telemetry["preDeployTaskResponse"] = PreDeployResponse.OPEN_SETTINGS.value
        context.settings_opener.open_settings()
        raise UserCancelledError()
    else:
        context.telemetry["preDeployTaskResponse"] = PreDeployResponse.CANCEL.value
        raise UserCancelledError()


def run_pre_deploy_task(
    context: ActionContext,
    deploy_fs_path: str,
    scm_type: Union[ScmType, str, None],
) -> None:
    """Run the pre-deploy task; return only if the deploy should proceed.

    Raises:
        PreDeployTaskNotFoundError: A task name is configured but matches no task.
        UserCancelledError: The task failed and the operator did not choose to deploy anyway.
    """
    result = try_run_pre_deploy_task(context, deploy_fs_path, scm_type)
    if result.failed_to_find_task:
        raise PreDeployTaskNotFoundError(result.task_name, qualified_key(PRE_DEPLOY_TASK_KEY))
    if result.exit_code is not None and result.exit_code != 0:
        handle_failed_pre_deploy_task(context, result)
