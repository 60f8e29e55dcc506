"""
Config patching — write extracted API keys into generated files.

Two placeholder styles are supported:

    .env             MEDIASTACK_RADARR_API_KEY=your-radarr-api-key-here
    app config YAML  api_key: ${MEDIASTACK_RADARR_API_KEY}

Files are handled as bytes split on ``\\n`` so every line that is not
rewritten (line endings, comments, unknown keys) stays byte-for-byte
identical.  A file is only written when something changed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from mediastack.core.services.api_keys import API_KEY_ENV_VARS

logger = logging.getLogger(__name__)


def env_values_for(keys: Mapping[str, str]) -> dict[str, str]:
    """Map extracted component keys to their env var names."""
    return {
        API_KEY_ENV_VARS[component]: key
        for component, key in keys.items()
        if component in API_KEY_ENV_VARS
    }


def _read(path: Path) -> str:
    return path.read_bytes().decode("utf-8")


def _write(path: Path, content: str) -> None:
    path.write_bytes(content.encode("utf-8"))


def update_env_file(path: Path, keys: Mapping[str, str]) -> int:
    """Replace ``VAR=...`` lines for each extracted key.

    Returns:
        Number of lines rewritten.

    Raises:
        OSError: The file is missing or unwritable.
    """
    values = env_values_for(keys)
    lines = _read(path).split("\n")

    changed = 0
    for i, line in enumerate(lines):
        body, cr = (line[:-1], "\r") if line.endswith("\r") else (line, "")
        for var, value in values.items():
            prefix = f"{var}="
            if body.startswith(prefix):
                replacement = f"{prefix}{value}{cr}"
                if replacement != line:
                    lines[i] = replacement
                    changed += 1
                break

    if changed:
        _write(path, "\n".join(lines))
    logger.debug("%s: %d env lines updated", path, changed)
    return changed


def update_placeholders(path: Path, keys: Mapping[str, str]) -> int:
    """Replace ``${VAR}`` tokens for each extracted key.

    Returns:
        Number of tokens replaced.

    Raises:
        OSError: The file is missing or unwritable.
    """
    content = _read(path)

    replaced = 0
    for var, value in env_values_for(keys).items():
        token = "${" + var + "}"
        count = content.count(token)
        if count:
            content = content.replace(token, value)
            replaced += count

    if replaced:
        _write(path, content)
    logger.debug("%s: %d placeholders replaced", path, replaced)
    return replaced
