from dataclasses import dataclass
from typing import Any, List


@dataclass
class Setting:
    package_name: str
    env_var: str
    key: str
    group: str
    description: str
    default: Any = None
    enum: List[str] | None = None


_registry: List[Setting] = []


def register_setting(
    package_name: str,
    env_var: str,
    key: str,
    group: str,
    description: str,
    default: Any = None,
    enum: List[str] | None = None,
) -> List[Setting]:
    """Register a new setting.

    Parameters
    ----------
    package_name: str
        Name of the package registering the setting.
    env_var: str
        The environment variable that overrides the setting.
    key: str
        The key of the setting inside the ``update_engine`` section of
        ``settings.yaml``.
    group: str
        Group the setting belongs to.
    description: str
        Human readable description of the setting.
    default: Any
        Value used when neither the settings file nor the environment
        provide one.
    enum: List[str] | None
        List of possible values for the setting.

    Returns
    -------
    List[Setting]
        The list of all registered settings.

    Registering a key again replaces the earlier entry.
    """
    _registry[:] = [existing for existing in _registry if existing.key != key]
    setting = Setting(
        package_name=package_name,
        env_var=env_var,
        key=key,
        group=group,
        description=description,
        default=default,
        enum=enum,
    )
    _registry.append(setting)
    return list(_registry)


def get_settings_registry() -> List[Setting]:
    """Return the list of all registered settings."""
    return list(_registry)


def find_setting(key: str) -> Setting | None:
    """Return the registered setting for a settings-file key, if any."""
    for setting in _registry:
        if setting.key == key:
            return setting
    return None
