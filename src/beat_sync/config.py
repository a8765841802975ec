"""
Configuration value access.

TOML sections arrive as plain dicts; every value read from them goes through
these helpers so a wrong type surfaces as ConfigurationError instead of a
TypeError deep inside the session.
"""

from typing import Any, Callable, Dict, Optional

from .errors import ConfigurationError


def config_section(config: Any, name: str) -> Dict[str, Any]:
    """
    A named table of the configuration ({} when absent).

    Raises:
        ConfigurationError: If the config or the section is not a table
    """
    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration must be a table, got {type(config).__name__}")
    section = config.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"[{name}] must be a table, got {section!r}")
    return section


def config_value(
    section: Dict[str, Any],
    key: str,
    default: Any,
    cast: Callable[[Any], Any],
    section_name: str
) -> Optional[Any]:
    """
    section[key] converted with `cast`; None stays None.

    Raises:
        ConfigurationError: If the value cannot be converted
    """
    value = section.get(key, default)
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Bad [{section_name}] {key}: {value!r}") from None
