"""Read and write pre-deploy settings from `.predeploy/config.yaml` files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol

from loguru import logger

from .constants import CONFIG_FILE, PRE_DEPLOY_TASK_KEY, SETTINGS_PREFIX, STATE_DIR_NAME
from .io_utils import _atomic_write_yaml, _load_yaml_with_error


class SettingsStore(Protocol):
    def get(self, key: str, scope_path: str) -> Optional[str]:
        ...


def qualified_key(key: str) -> str:
    """Return the user-facing name of a setting, e.g. `predeploy.preDeployTask`."""
    return f"{SETTINGS_PREFIX}.{key}"


def settings_path(folder: Path) -> Path:
    return folder / STATE_DIR_NAME / CONFIG_FILE


def load_settings_file(path: Path) -> tuple[dict[str, Any], str | None]:
    """Load one settings file.

    Args:
        path: Path to a `config.yaml`.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    data, err = _load_yaml_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _lookup(config: dict[str, Any], key: str) -> Any:
    # Both `predeploy: {preDeployTask: x}` and `predeploy.preDeployTask: x` are accepted.
    flat = config.get(qualified_key(key))
    if flat is not None:
        return flat
    return _get_nested(config, SETTINGS_PREFIX, key)


class FileSettingsStore:
    """Resolve settings from the nearest folder config, then the user config."""

    def __init__(self, user_config_path: Optional[Path] = None) -> None:
        self.user_config_path = user_config_path

    def candidate_files(self, scope_path: str) -> list[Path]:
        start = Path(scope_path).expanduser().resolve()
        folders = [start, *start.parents]
        files = [settings_path(folder) for folder in folders]
        if self.user_config_path is not None:
            files.append(self.user_config_path)
        return files

    def get(self, key: str, scope_path: str) -> Optional[str]:
        for path in self.candidate_files(scope_path):
            if not path.exists():
                continue
            data, err = load_settings_file(path)
            if err:
                logger.warning("Ignoring unreadable settings file {}: {}", path, err)
                continue
            value = _lookup(data, key)
            if value is None:
                continue
            if not isinstance(value, str):
                logger.warning("Setting {} in {} is not a string; ignoring", qualified_key(key), path)
                continue
            return value
        return None

    def set(self, key: str, value: Optional[str], folder: Path) -> Path:
        """Write (or clear, when `value` is None) a setting in the folder's config file.

        Raises:
            ValueError: If the existing file cannot be parsed; it is left untouched.
        """
        path = settings_path(folder.expanduser().resolve())
        data, err = load_settings_file(path)
        if err:
            raise ValueError(f"Refusing to overwrite unreadable settings file: {err}")
        data.pop(qualified_key(key), None)
        section = data.get(SETTINGS_PREFIX)
        if not isinstance(section, dict):
            section = {}
        if value is None:
            section.pop(key, None)
        else:
            section[key] = value
        if section:
            data[SETTINGS_PREFIX] = section
        else:
            data.pop(SETTINGS_PREFIX, None)
        _atomic_write_yaml(path, data)
        logger.debug("Wrote {}={!r} to {}", qualified_key(key), value, path)
        return path


def get_pre_deploy_task(settings: SettingsStore, deploy_fs_path: str) -> Optional[str]:
    return settings.get(PRE_DEPLOY_TASK_KEY, deploy_fs_path)
