from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger
from rich.console import Console

from .config import FileSettingsStore, qualified_key, settings_path
from .constants import EXIT_CANCELLED, EXIT_ERROR, EXIT_OK, PRE_DEPLOY_TASK_KEY
from .errors import PreDeployError, TaskDefinitionError, UserCancelledError
from .logging_utils import configure_logging, summarize_result
from .models import ScmType
from .predeploy import ActionContext, run_pre_deploy_task, try_run_pre_deploy_task
from .tasks import LocalTaskRegistry, discover_workspace_folders
from .ui import EditorSettingsOpener, LoguruOutputChannel, RichProgressReporter, RichPrompter


def _resolve_path(path: Optional[str]) -> Path:
    return Path(path).expanduser().resolve() if path else Path.cwd().resolve()


def _settings(args: argparse.Namespace) -> FileSettingsStore:
    user_config = Path(args.user_config).expanduser().resolve() if args.user_config else None
    return FileSettingsStore(user_config_path=user_config)


def _registry(args: argparse.Namespace, deploy_path: Path) -> LocalTaskRegistry:
    folders = [_resolve_path(folder) for folder in args.workspace_folder or []]
    if not folders:
        folders = discover_workspace_folders(deploy_path)
    return LocalTaskRegistry(folders, output=LoguruOutputChannel())


def _settings_file_to_open(settings: FileSettingsStore, deploy_path: Path) -> Path:
    for path in settings.candidate_files(str(deploy_path)):
        if path.exists():
            return path
    return settings_path(deploy_path)


def _ctx(args: argparse.Namespace, deploy_path: Path, registry: LocalTaskRegistry) -> ActionContext:
    settings = _settings(args)
    console = Console(stderr=True)
    return ActionContext(
        registry=registry,
        settings=settings,
        output=registry.output or LoguruOutputChannel(),
        progress=RichProgressReporter(console),
        prompter=RichPrompter(console),
        settings_opener=EditorSettingsOpener(_settings_file_to_open(settings, deploy_path), console),
    )


def _run(args: argparse.Namespace) -> int:
    deploy_path = _resolve_path(args.deploy_path)
    with _registry(args, deploy_path) as registry:
        context = _ctx(args, deploy_path, registry)
        try:
            run_pre_deploy_task(context, str(deploy_path), args.scm_type)
        except UserCancelledError:
            sys.stderr.write("Deploy cancelled.\n")
            return EXIT_CANCELLED
        except PreDeployError as exc:
            sys.stderr.write(str(exc) + "\n")
            return EXIT_ERROR
        finally:
            logger.debug("Telemetry: {}", context.telemetry)
    sys.stdout.write(json.dumps({"deploy": "proceed", "deploy_path": str(deploy_path)}) + "\n")
    return EXIT_OK


def _check(args: argparse.Namespace) -> int:
    deploy_path = _resolve_path(args.deploy_path)
    with _registry(args, deploy_path) as registry:
        context = _ctx(args, deploy_path, registry)
        try:
            result = try_run_pre_deploy_task(context, str(deploy_path), args.scm_type)
        except TaskDefinitionError as exc:
            sys.stderr.write(str(exc) + "\n")
            return EXIT_ERROR
    sys.stdout.write(json.dumps({"result": summarize_result(result), "telemetry": context.telemetry}, indent=2) + "\n")
    return EXIT_ERROR if result.failed_to_find_task or result.failed else EXIT_OK


def _tasks_list(args: argparse.Namespace) -> int:
    path = _resolve_path(args.path)
    with _registry(args, path) as registry:
        try:
            tasks = registry.list_tasks()
        except TaskDefinitionError as exc:
            sys.stderr.write(str(exc) + "\n")
            return EXIT_ERROR
    sys.stdout.write(json.dumps({"tasks": [task.to_dict() for task in tasks]}, indent=2) + "\n")
    return EXIT_OK


def _config_get(args: argparse.Namespace) -> int:
    path = _resolve_path(args.path)
    value = _settings(args).get(PRE_DEPLOY_TASK_KEY, str(path))
    sys.stdout.write(json.dumps({qualified_key(PRE_DEPLOY_TASK_KEY): value}) + "\n")
    return EXIT_OK


def _config_set(args: argparse.Namespace) -> int:
    path = _resolve_path(args.path)
    try:
        written = _settings(args).set(PRE_DEPLOY_TASK_KEY, args.task, path)
    except ValueError as exc:
        sys.stderr.write(str(exc) + "\n")
        return EXIT_ERROR
    sys.stdout.write(json.dumps({qualified_key(PRE_DEPLOY_TASK_KEY): args.task, "path": str(written)}) + "\n")
    return EXIT_OK


def _config_unset(args: argparse.Namespace) -> int:
    path = _resolve_path(args.path)
    try:
        written = _settings(args).set(PRE_DEPLOY_TASK_KEY, None, path)
    except ValueError as exc:
        sys.stderr.write(str(exc) + "\n")
        return EXIT_ERROR
    sys.stdout.write(json.dumps({qualified_key(PRE_DEPLOY_TASK_KEY): None, "path": str(written)}) + "\n")
    return EXIT_OK


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("deploy_path", nargs="?", default=None, help="Folder being deployed (default: current directory)")
    parser.add_argument(
        "--scm-type",
        default=None,
        choices=[scm.value for scm in ScmType],
        help="Source-control mode of the deploy target",
    )
    parser.add_argument(
        "--workspace-folder",
        action="append",
        default=None,
        help="Folder whose .predeploy/tasks.yaml to load (repeatable; default: discovered from the deploy path)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the configured pre-deploy task before a deploy")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    parser.add_argument("--user-config", default=None, help="User-level settings file consulted after folder settings")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run the pre-deploy task and decide whether to deploy")
    _add_run_arguments(run)
    run.set_defaults(func=_run)

    check = subparsers.add_parser("check", help="Run the pre-deploy task and print the result without prompting")
    _add_run_arguments(check)
    check.set_defaults(func=_check)

    tasks = subparsers.add_parser("tasks", help="Inspect tasks")
    tasks_sub = tasks.add_subparsers(dest="tasks_cmd", required=True)
    tlist = tasks_sub.add_parser("list", help="List tasks visible from a path")
    tlist.add_argument("path", nargs="?", default=None)
    tlist.add_argument("--workspace-folder", action="append", default=None)
    tlist.set_defaults(func=_tasks_list)

    config = subparsers.add_parser("config", help=f"Manage the {qualified_key(PRE_DEPLOY_TASK_KEY)} setting")
    config_sub = config.add_subparsers(dest="config_cmd", required=True)
    cget = config_sub.add_parser("get", help="Show the effective setting for a path")
    cget.add_argument("path", nargs="?", default=None)
    cget.set_defaults(func=_config_get)
    cset = config_sub.add_parser("set", help="Set the task name in a folder's settings")
    cset.add_argument("task")
    cset.add_argument("--path", default=None)
    cset.set_defaults(func=_config_set)
    cunset = config_sub.add_parser("unset", help="Remove the task name from a folder's settings")
    cunset.add_argument("--path", default=None)
    cunset.set_defaults(func=_config_unset)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)


def run() -> None:
    raise SystemExit(main())
