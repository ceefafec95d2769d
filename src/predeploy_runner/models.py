"""Value types shared by the pre-deploy resolver, launcher and watcher."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from .constants import DEFAULT_TASK_SOURCE
from .utils import _now_iso


class ScmType(str, Enum):
    """Source-control mode of the deploy target."""

    LOCAL_GIT = "LocalGit"
    GITHUB = "GitHub"
    NONE = "None"


# Deploys driven by a server-side build pipeline run their own build steps.
SERVER_BUILD_SCM_TYPES = {ScmType.LOCAL_GIT.value, ScmType.GITHUB.value}


class PreDeployResponse(str, Enum):
    """Operator answer to a failed pre-deploy task."""

    DEPLOY_ANYWAY = "deployAnyway"
    OPEN_SETTINGS = "openSettings"
    CANCEL = "cancel"


@dataclass
class TaskResult:
    """Classification of one pre-deploy attempt."""

    task_name: Optional[str] = None
    exit_code: Optional[int] = None
    failed_to_find_task: bool = False

    @property
    def failed(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(eq=False)
class TaskDescriptor:
    """A runnable task known to the registry.

    Instances compare by identity: two descriptors with the same fields are
    still different tasks.
    """

    name: str
    scope_path: Optional[str] = None
    source: str = DEFAULT_TASK_SOURCE
    command: Optional[str] = None
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.source}: {self.name}" if self.source else self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "scope_path": self.scope_path,
            "command": self.command,
            "cwd": self.cwd,
            "depends_on": list(self.depends_on),
        }


@dataclass
class CompletionEvent:
    """A task process ended. `exit_code` is None when the host could not report one."""

    task: TaskDescriptor
    exit_code: Optional[int]
    ended_at: str = field(default_factory=_now_iso)
