"""
Template records for polymorph.

A template file describes one tool: its cache name, the directory pattern that
identifies an installed version, the parameters used by every expansion, an alias
table for executable names, and how to fetch the files (a tarball or a single
binary). Files ending in .yaml/.yml are read with PyYAML, everything else as TOML.
"""

import os
import tomllib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from polymorph.constants import TEMPLATE_KEYS, YAML_EXTENSIONS
from polymorph.exceptions import ConfigFileError, ConfigValidationError
from polymorph.log_utils import logger


@dataclass
class TarballFetcher:
    """Fetch a gzip-compressed tarball and extract it into the version directory."""

    url: str
    """URL template of the tarball"""


@dataclass
class BinaryFetcher:
    """Fetch a single executable into the version directory."""

    url: str
    """URL template of the executable"""


@dataclass
class ExecTemplate:
    """Parsed template file."""

    name: str
    """Logical tool name; the cache namespace under the polymorph cache root"""

    directory: str
    """Template for the version directory name"""

    params: Dict[str, str] = field(default_factory=dict)
    """Values available to every template expansion"""

    executables: Dict[str, str] = field(default_factory=dict)
    """Requested executable base name -> file name inside the version directory"""

    tarball: Optional[TarballFetcher] = None
    binary: Optional[BinaryFetcher] = None


def _require_string(data: Dict[str, Any], key: str, source: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigValidationError(
            f"error reading template {source}",
            details=f"'{key}' must be a non-empty string",
        )
    return value


def _string_table(data: Dict[str, Any], key: str, source: str) -> Dict[str, str]:
    """
    Read an optional table of string values.

    Strings, integers and floats are accepted and converted to strings so that
    `version = 1.2` in YAML behaves like `version = "1.2"`. Booleans and nested
    structures are rejected.
    """
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigValidationError(
            f"error reading template {source}", details=f"'{key}' must be a table"
        )

    table: Dict[str, str] = {}
    for item_key, item_value in value.items():
        if isinstance(item_value, bool) or not isinstance(
            item_value, (str, int, float)
        ):
            raise ConfigValidationError(
                f"error reading template {source}",
                details=f"'{key}.{item_key}' must be a string",
            )
        table[str(item_key)] = str(item_value)
    return table


def _fetcher_url(data: Dict[str, Any], key: str, source: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigValidationError(
            f"error reading template {source}", details=f"'{key}' must be a table"
        )
    return _require_string(value, "url", f"{source} [{key}]")


def parse_template(data: Any, source: str = "<template>") -> ExecTemplate:
    """
    Build an ExecTemplate from an already-decoded mapping.

    Parameters:
        data: Decoded TOML/YAML document.
        source: Name used in error messages (usually the file path).

    Returns:
        ExecTemplate: The validated template record. Whether exactly one fetcher is
        present is not checked here; that is decided when a fetch is needed.

    Raises:
        ConfigValidationError: If a field is missing or has the wrong type.
    """
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"error reading template {source}",
            details="template must be a table of fields",
        )

    for key in data:
        if key not in TEMPLATE_KEYS:
            logger.debug(f"Ignoring unknown key '{key}' in template {source}")

    name = _require_string(data, "name", source)
    if os.sep in name or (os.altsep and os.altsep in name) or name in (".", ".."):
        raise ConfigValidationError(
            f"error reading template {source}",
            details=f"'name' must be a single path component, got {name!r}",
        )

    tarball_url = _fetcher_url(data, "tarball", source)
    binary_url = _fetcher_url(data, "binary", source)

    return ExecTemplate(
        name=name,
        directory=_require_string(data, "directory", source),
        params=_string_table(data, "params", source),
        executables=_string_table(data, "executables", source),
        tarball=TarballFetcher(url=tarball_url) if tarball_url is not None else None,
        binary=BinaryFetcher(url=binary_url) if binary_url is not None else None,
    )


def load_template(path: str) -> ExecTemplate:
    """
    Read and validate a template file.

    Parameters:
        path (str): Template file path. `.yaml`/`.yml` files are parsed as YAML,
            anything else as TOML.

    Returns:
        ExecTemplate: The parsed template.

    Raises:
        ConfigFileError: If the file cannot be read.
        ConfigValidationError: If the file cannot be parsed or is invalid.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigFileError(f"error reading template {path}", details=str(e)) from e

    if path.lower().endswith(YAML_EXTENSIONS):
        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"error parsing template {path}", details=str(e)
            ) from e
    else:
        try:
            data = tomllib.loads(raw.decode("utf-8"))
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
            raise ConfigValidationError(
                f"error parsing template {path}", details=str(e)
            ) from e

    logger.debug(f"Loaded template {path}")
    return parse_template(data, source=path)
