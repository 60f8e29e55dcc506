"""
API key extraction — read the keys Servarr apps generate on first start.

Radarr, Sonarr, Readarr and Prowlarr write ``<ApiKey>`` into
``<config_dir>/<component>/config.xml`` the first time they boot.  The
setup run reads them once the services are healthy and uses them to
patch generated config files and to talk to each API.

A missing, unparseable or empty file fails only that component.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from mediastack.core.models.stack import (
    COMPONENT_PROWLARR,
    COMPONENT_RADARR,
    COMPONENT_READARR,
    COMPONENT_SONARR,
    SERVARR_COMPONENTS,
)

logger = logging.getLogger(__name__)

# Env var each component's key is published under in .env / ${VAR} placeholders
API_KEY_ENV_VARS: dict[str, str] = {
    COMPONENT_RADARR: "MEDIASTACK_RADARR_API_KEY",
    COMPONENT_SONARR: "MEDIASTACK_SONARR_API_KEY",
    COMPONENT_READARR: "MEDIASTACK_READARR_API_KEY",
    COMPONENT_PROWLARR: "MEDIASTACK_PROWLARR_API_KEY",
}


class ApiKeyError(Exception):
    """A component's config.xml could not yield an API key."""


@dataclass
class ApiKeyScan:
    """Keys found, and why the others were not."""

    keys: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def config_xml_path(config_dir: Path, component: str) -> Path:
    return config_dir / component / "config.xml"


def read_api_key(path: Path) -> str:
    """Read ``<Config><ApiKey>`` from a Servarr config.xml.

    Raises:
        ApiKeyError: Missing file, invalid XML, or empty key.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ApiKeyError(f"read {path}: {e.strerror or e}") from e

    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise ApiKeyError(f"parse {path}: {e}") from e

    if root.tag != "Config":
        raise ApiKeyError(f"parse {path}: expected <Config> root, got <{root.tag}>")

    key = (root.findtext("ApiKey") or "").strip()
    if not key:
        raise ApiKeyError(f"empty ApiKey in {path}")
    return key


def read_api_keys(config_dir: Path, components: Iterable[str]) -> ApiKeyScan:
    """Read API keys for every Servarr component in ``components``.

    Components without a config.xml convention are ignored.
    """
    scan = ApiKeyScan()
    for component in components:
        if component not in SERVARR_COMPONENTS:
            continue
        path = config_xml_path(config_dir, component)
        try:
            scan.keys[component] = read_api_key(path)
        except ApiKeyError as e:
            logger.warning("could not read API key for %s: %s", component, e)
            scan.errors[component] = str(e)
            continue
        logger.info("read API key for %s from %s", component, path)
    return scan
