"""Tests for resolving, running and judging the pre-deploy task."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from loguru import logger

from predeploy_runner.errors import PreDeployTaskNotFoundError, UserCancelledError
from predeploy_runner.models import CompletionEvent, ScmType, TaskDescriptor, TaskResult
from predeploy_runner.predeploy import (
    PreDeployTaskWatcher,
    find_pre_deploy_task,
    handle_failed_pre_deploy_task,
    is_scope_equal,
    is_task_equal,
    run_pre_deploy_task,
    strip_task_source,
    try_run_pre_deploy_task,
)

from conftest import FakeRegistry


def _task(name: str, scope: Path | str | None, **kwargs) -> TaskDescriptor:
    return TaskDescriptor(name=name, scope_path=str(scope) if scope is not None else None, **kwargs)


class TestTaskMatching:
    def test_strip_task_source(self):
        assert strip_task_source("func: extensions install") == "extensions install"
        assert strip_task_source("npm:build") == "build"
        assert strip_task_source("build") == "build"
        assert strip_task_source("a: b: c") == "b: c"

    def test_is_task_equal_ignores_case_and_accepts_ancestor_scope(self, project: Path):
        task = _task("Build", project)
        assert is_task_equal("build", str(project), task)
        assert is_task_equal("BUILD", str(project / "sub"), task)
        assert not is_task_equal("test", str(project), task)

    def test_is_task_equal_rejects_unscoped_and_sibling_tasks(self, project: Path, tmp_path: Path):
        assert not is_task_equal("build", str(project), _task("build", None))
        assert not is_task_equal("build", str(project), _task("build", tmp_path / "other"))
        # String prefix is not ancestry.
        assert not is_task_equal("build", str(tmp_path / "project"), _task("build", tmp_path / "proj"))

    def test_is_scope_equal(self, project: Path, tmp_path: Path):
        assert is_scope_equal(_task("x", project), str(project / "sub"))
        assert not is_scope_equal(_task("x", project / "sub"), str(project))
        assert not is_scope_equal(_task("x", None), str(project))

    def test_exact_match_wins_over_stripped_match(self, project: Path):
        stripped = _task("extensions install", project)
        exact = _task("func: extensions install", project)
        found = find_pre_deploy_task("func: extensions install", str(project), [stripped, exact])
        assert found is exact

    def test_prefixed_setting_finds_bare_task(self, project: Path):
        task = _task("extensions install", project, source="func")
        assert find_pre_deploy_task("func: extensions install", str(project), [task]) is task

    def test_bare_setting_finds_prefixed_task_from_subfolder(self, project: Path):
        task = _task("func: extensions install", project)
        found = find_pre_deploy_task("extensions install", str(project / "sub"), [task])
        assert found is task

    def test_first_match_in_registry_order(self, project: Path):
        first = _task("build", project)
        second = _task("build", project)
        assert find_pre_deploy_task("build", str(project), [first, second]) is first

    def test_no_match(self, project: Path, tmp_path: Path):
        tasks = [_task("build", project), _task("lint", tmp_path / "elsewhere")]
        assert find_pre_deploy_task("lint", str(project), tasks) is None


class TestPreDeployTaskWatcher:
    def test_resolves_on_launched_task_success(self, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=task, exit_code=0))

        assert watcher.wait(timeout=1) == TaskResult(task_name="build", exit_code=0)
        assert registry.events.listener_count == 0

    def test_failing_dependency_in_scope_ends_wait(self, project: Path):
        task = _task("build", project, depends_on=["lint"])
        dependency = _task("lint", project)
        registry = FakeRegistry([task, dependency])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=dependency, exit_code=2))
        registry.events.fire(CompletionEvent(task=task, exit_code=0))

        assert watcher.wait(timeout=1) == TaskResult(task_name="lint", exit_code=2)

    def test_ignores_successful_and_unrelated_tasks(self, project: Path, tmp_path: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=_task("lint", project), exit_code=0))
        registry.events.fire(CompletionEvent(task=_task("other", tmp_path / "elsewhere"), exit_code=1))
        registry.events.fire(CompletionEvent(task=_task("global", None), exit_code=1))
        assert watcher.wait(timeout=0.05) is None

        registry.events.fire(CompletionEvent(task=task, exit_code=1))
        assert watcher.wait(timeout=1) == TaskResult(task_name="build", exit_code=1)

    def test_same_fields_different_identity_is_not_the_launched_task(self, project: Path):
        task = _task("build", project)
        twin = _task("build", project)
        registry = FakeRegistry([task, twin])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=twin, exit_code=0))

        assert watcher.result is None
        watcher.dispose()

    def test_dependency_without_exit_code_ends_wait(self, project: Path):
        task = _task("build", project, depends_on=["lint"])
        dependency = _task("lint", project)
        registry = FakeRegistry([task, dependency])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=dependency, exit_code=None))

        assert watcher.wait(timeout=1) == TaskResult(task_name="lint", exit_code=None)
        assert registry.events.listener_count == 0

    def test_logs_when_the_wait_ended(self, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)
        event = CompletionEvent(task=task, exit_code=0)
        messages: list[str] = []
        sink_id = logger.add(messages.append, level="DEBUG", format="{message}")
        try:
            registry.events.fire(event)
        finally:
            logger.remove(sink_id)

        assert event.ended_at
        assert any("Pre-deploy wait ended" in m and event.ended_at in m for m in messages)
        assert watcher.result == TaskResult(task_name="build", exit_code=0)

    def test_resolves_once(self, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        watcher.handle_event(CompletionEvent(task=task, exit_code=3))
        watcher.handle_event(CompletionEvent(task=task, exit_code=0))

        assert watcher.result == TaskResult(task_name="build", exit_code=3)

    def test_event_from_worker_thread(self, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        watcher = PreDeployTaskWatcher(task, str(project)).attach(registry)

        timer = threading.Timer(0.05, lambda: registry.events.fire(CompletionEvent(task=task, exit_code=0)))
        timer.start()
        try:
            assert watcher.wait(timeout=5) == TaskResult(task_name="build", exit_code=0)
        finally:
            timer.cancel()

    def test_independent_watchers_each_see_the_event(self, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task])
        first = PreDeployTaskWatcher(task, str(project)).attach(registry)
        second = PreDeployTaskWatcher(task, str(project)).attach(registry)

        registry.events.fire(CompletionEvent(task=task, exit_code=0))

        assert first.wait(timeout=1) == second.wait(timeout=1) == TaskResult(task_name="build", exit_code=0)
        assert registry.events.listener_count == 0


class TestTryRunPreDeployTask:
    def test_no_task_configured(self, make_context, project: Path):
        registry = FakeRegistry()
        context = make_context(registry)

        result = try_run_pre_deploy_task(context, str(project), None)

        assert result == TaskResult(task_name=None, exit_code=None, failed_to_find_task=False)
        assert registry.list_calls == 0
        assert registry.executed == []
        assert context.telemetry["hasPreDeployTask"] == "false"

    def test_empty_task_name_counts_as_unset(self, make_context, project: Path):
        registry = FakeRegistry()
        result = try_run_pre_deploy_task(make_context(registry, task_name=""), str(project), None)
        assert result == TaskResult()
        assert registry.list_calls == 0

    @pytest.mark.parametrize("scm_type", [ScmType.LOCAL_GIT, ScmType.GITHUB, "LocalGit", "GitHub"])
    def test_server_build_scm_skips_task(self, make_context, project: Path, scm_type):
        task = _task("build", project)
        registry = FakeRegistry([task])
        context = make_context(registry, task_name="build")

        result = try_run_pre_deploy_task(context, str(project), scm_type)

        assert result == TaskResult(task_name="build")
        assert registry.executed == []
        assert registry.list_calls == 0
        assert context.output.lines == ['WARNING: Ignoring preDeployTask "build" for non-zip deploy.']
        assert context.progress.titles == []

    def test_task_not_found(self, make_context, project: Path):
        registry = FakeRegistry([_task("lint", project)])
        result = try_run_pre_deploy_task(make_context(registry, task_name="build"), str(project), None)
        assert result == TaskResult(task_name="build", exit_code=None, failed_to_find_task=True)
        assert registry.executed == []

    def test_runs_task_under_progress(self, make_context, project: Path):
        task = _task("build", project)
        seen_active: list[bool] = []

        def _on_execute(executed: TaskDescriptor) -> list[CompletionEvent]:
            seen_active.append(context.progress.active)
            return [CompletionEvent(task=executed, exit_code=0)]

        registry = FakeRegistry([task], on_execute=_on_execute)
        context = make_context(registry, task_name="build")

        result = try_run_pre_deploy_task(context, str(project / "sub"), ScmType.NONE)

        assert result == TaskResult(task_name="build", exit_code=0)
        assert registry.executed == [task]
        assert seen_active == [True]
        assert context.progress.titles == ['Running preDeployTask "build"...']
        assert context.telemetry == {"hasPreDeployTask": "true", "preDeployTaskExitCode": "0"}
        assert registry.events.listener_count == 0

    def test_reports_failing_dependency_name(self, make_context, project: Path):
        task = _task("build", project, depends_on=["lint"])
        lint = _task("lint", project)
        registry = FakeRegistry([task, lint], on_execute=lambda _: [CompletionEvent(task=lint, exit_code=4)])

        result = try_run_pre_deploy_task(make_context(registry, task_name="build"), str(project), None)

        assert result == TaskResult(task_name="lint", exit_code=4)

    def test_listener_released_when_execute_raises(self, make_context, project: Path):
        task = _task("build", project)

        def _boom(_: TaskDescriptor) -> list[CompletionEvent]:
            raise RuntimeError("cannot start")

        registry = FakeRegistry([task], on_execute=_boom)
        with pytest.raises(RuntimeError):
            try_run_pre_deploy_task(make_context(registry, task_name="build"), str(project), None)
        assert registry.events.listener_count == 0


class TestRunPreDeployTask:
    def test_not_found_raises_with_setting_name(self, make_context, project: Path):
        registry = FakeRegistry()
        with pytest.raises(PreDeployTaskNotFoundError) as excinfo:
            run_pre_deploy_task(make_context(registry, task_name="build"), str(project), None)
        message = str(excinfo.value)
        assert '"build"' in message
        assert '"predeploy.preDeployTask"' in message

    def test_success_returns(self, make_context, project: Path):
        task = _task("build", project)
        context = make_context(FakeRegistry([task]), task_name="build")
        run_pre_deploy_task(context, str(project), None)
        assert context.prompter.calls == []

    def test_not_configured_returns(self, make_context, project: Path):
        context = make_context(FakeRegistry())
        run_pre_deploy_task(context, str(project), None)
        assert context.prompter.calls == []

    def test_dependency_without_exit_code_proceeds_without_prompt(self, make_context, project: Path):
        task = _task("build", project, depends_on=["lint"])
        lint = _task("lint", project)
        registry = FakeRegistry([task, lint], on_execute=lambda _: [CompletionEvent(task=lint, exit_code=None)])
        context = make_context(registry, task_name="build", answer="Deploy Anyway")

        run_pre_deploy_task(context, str(project), None)

        assert context.prompter.calls == []
        assert context.telemetry["preDeployTaskExitCode"] == "None"
        assert "preDeployTaskResponse" not in context.telemetry

    def test_failure_then_deploy_anyway(self, make_context, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task], on_execute=lambda t: [CompletionEvent(task=t, exit_code=1)])
        context = make_context(registry, task_name="build", answer="Deploy Anyway")

        run_pre_deploy_task(context, str(project), None)

        assert context.telemetry["preDeployTaskResponse"] == "deployAnyway"
        assert context.settings_opener.count == 0
        message, items, modal = context.prompter.calls[0]
        assert message == 'Errors exist after running preDeployTask "build". See task output for more info.'
        assert items == ["Deploy Anyway", "Open Settings"]
        assert modal is True

    def test_failure_then_open_settings(self, make_context, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task], on_execute=lambda t: [CompletionEvent(task=t, exit_code=1)])
        context = make_context(registry, task_name="build", answer="Open Settings")

        with pytest.raises(UserCancelledError):
            run_pre_deploy_task(context, str(project), None)

        assert context.settings_opener.count == 1
        assert context.telemetry["preDeployTaskResponse"] == "openSettings"

    def test_failure_then_dismissed(self, make_context, project: Path):
        task = _task("build", project)
        registry = FakeRegistry([task], on_execute=lambda t: [CompletionEvent(task=t, exit_code=1)])
        context = make_context(registry, task_name="build", answer=None)

        with pytest.raises(UserCancelledError):
            run_pre_deploy_task(context, str(project), None)

        assert context.settings_opener.count == 0
        assert context.telemetry["preDeployTaskResponse"] == "cancel"

    def test_handle_failed_names_dependency(self, make_context):
        context = make_context(FakeRegistry(), answer="Deploy Anyway")
        handle_failed_pre_deploy_task(context, TaskResult(task_name="lint", exit_code=2))
        assert '"lint"' in context.prompter.calls[0][0]
