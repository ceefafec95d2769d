"""Exceptions raised while running pre-deploy tasks."""

from __future__ import annotations

from typing import Optional


class PreDeployError(Exception):
    """Base class for pre-deploy failures."""


class PreDeployTaskNotFoundError(PreDeployError):
    """A task name is configured but no matching task exists."""

    def __init__(self, task_name: Optional[str], setting_key: str) -> None:
        self.task_name = task_name
        self.setting_key = setting_key
        super().__init__(
            f'Failed to find pre-deploy task "{task_name}". '
            f'Modify your tasks or the setting "{setting_key}".'
        )


class UserCancelledError(PreDeployError):
    """The operator chose to stop the deploy."""

    def __init__(self, message: str = "Operation cancelled.") -> None:
        super().__init__(message)


class TaskDefinitionError(PreDeployError):
    """A tasks file could not be turned into runnable tasks."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"{path}: {detail}")
