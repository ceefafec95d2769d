"""Provide the public `predeploy_runner` package exports."""

from __future__ import annotations

from .errors import PreDeployError, PreDeployTaskNotFoundError, TaskDefinitionError, UserCancelledError
from .models import CompletionEvent, ScmType, TaskDescriptor, TaskResult
from .predeploy import ActionContext, run_pre_deploy_task, try_run_pre_deploy_task

__all__ = [
    "ActionContext",
    "CompletionEvent",
    "PreDeployError",
    "PreDeployTaskNotFoundError",
    "ScmType",
    "TaskDefinitionError",
    "TaskDescriptor",
    "TaskResult",
    "UserCancelledError",
    "run_pre_deploy_task",
    "try_run_pre_deploy_task",
]
