"""Environment variable expansion for table declarations.

Connection URIs usually carry credentials, so option values may reference
``${VAR_NAME}`` (or ``$VAR_NAME``) and have them filled in from the
environment, optionally seeded from a ``.env`` file via python-dotenv.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file", "unresolved_references"]

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Expand ``${VAR}`` / ``$VAR`` references in a string.

    Unset variables are left as written unless ``strict`` is set, in which
    case ``KeyError`` is raised.

    Example:
        >>> os.environ["MONGO_HOST"] = "localhost"
        >>> expand_env_vars("mongodb://${MONGO_HOST}:27017")
        'mongodb://localhost:27017'
    """

    def replacer(match: "re.Match[str]") -> str:
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if strict:
                raise KeyError(f"Environment variable not set: {var_name}")
            return str(match.group(0))
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def _expand_value(value: Any, strict: bool) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict)
    if isinstance(value, dict):
        return expand_options(value, strict=strict)
    if isinstance(value, list):
        return [_expand_value(item, strict) for item in value]
    return value


def expand_options(options: Dict[str, Any], *, strict: bool = False) -> Dict[str, Any]:
    """Expand environment variables in the string values of an options mapping.

    Nested mappings and lists (an inline ``copy.existing.pipeline``) are
    expanded too.
    """
    return {key: _expand_value(value, strict) for key, value in options.items()}


def unresolved_references(options: Dict[str, Any]) -> List[Tuple[str, str]]:
    """``(option key, variable name)`` pairs whose ``${VAR}`` references are unset.

    Bare ``$name`` is skipped: aggregation stages use it for operators.
    """
    found: List[Tuple[str, str]] = []

    def scan(key: str, value: Any) -> None:
        if isinstance(value, str):
            for match in ENV_VAR_PATTERN.finditer(value):
                var_name = match.group(1)
                if var_name and var_name not in os.environ:
                    found.append((key, var_name))
        elif isinstance(value, dict):
            for item in value.values():
                scan(key, item)
        elif isinstance(value, list):
            for item in value:
                scan(key, item)

    for key, value in options.items():
        scan(key, value)
    return found
