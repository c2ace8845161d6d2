"""
Cache path resolution for polymorph.

Maps a template and a requested executable name onto the cache layout

    <user cache dir>/polymorph/<template name>/<expanded directory>/<executable>

without touching the filesystem.
"""

import os
from dataclasses import dataclass
from typing import Optional

import platformdirs

from polymorph.config import ExecTemplate
from polymorph.constants import CACHE_DIR_ENV_VAR, CACHE_NAMESPACE
from polymorph.exceptions import ConfigValidationError, TemplateExpansionError
from polymorph.templates import expand_template


@dataclass(frozen=True)
class ResolvedPaths:
    """Locations derived from a template for one requested executable."""

    cache_root: str
    """Per-tool cache directory, parent of every version directory"""

    version_dir: str
    """Directory holding one fully installed version"""

    executable_path: str
    """Path that is executed"""

    executable: str
    """Alias-resolved file name of the executable inside version_dir"""


def get_user_cache_dir() -> str:
    """
    Base user cache directory: POLYMORPH_CACHE_DIR when set, otherwise the
    platform convention from platformdirs (e.g. ~/.cache on Linux).
    """
    override = os.environ.get(CACHE_DIR_ENV_VAR)
    if override:
        return override
    return platformdirs.user_cache_dir()


def get_cache_root(name: str, cache_dir: Optional[str] = None) -> str:
    """Return the cache directory for the tool called `name`."""
    base = cache_dir if cache_dir is not None else get_user_cache_dir()
    return os.path.join(base, CACHE_NAMESPACE, name)


def resolve_executable_name(template: ExecTemplate, executable_name: str) -> str:
    """
    Map the last path segment of `executable_name` through the template's alias
    table. Names without an alias are returned unchanged.
    """
    base = os.path.basename(executable_name.rstrip("/")) or executable_name
    return template.executables.get(base, base)


def _validate_directory(directory: str, template: ExecTemplate) -> None:
    if not directory or os.path.isabs(directory):
        raise ConfigValidationError(
            f"invalid version directory for {template.name}",
            details=f"{template.directory!r} expanded to {directory!r}",
        )
    segments = directory.replace("\\", "/").split("/")
    if ".." in segments:
        raise ConfigValidationError(
            f"invalid version directory for {template.name}",
            details=f"{directory!r} escapes the cache directory",
        )


def resolve_paths(
    template: ExecTemplate, executable_name: str, cache_dir: Optional[str] = None
) -> ResolvedPaths:
    """
    Compute the cache paths for `executable_name` as described by `template`.

    Parameters:
        template (ExecTemplate): Parsed template.
        executable_name (str): Requested executable; only its base name is used.
        cache_dir (Optional[str]): Base cache directory override; defaults to
            get_user_cache_dir().

    Returns:
        ResolvedPaths: The cache root, version directory and executable path.

    Raises:
        TemplateExpansionError: If the directory template cannot be expanded.
        ConfigValidationError: If the expanded directory is empty, absolute, or
            contains a '..' segment.
    """
    try:
        directory = expand_template(template.directory, template.params)
    except TemplateExpansionError as e:
        e.message = (
            f"error expanding directory template of {template.name}: {e.message}"
        )
        raise
    _validate_directory(directory, template)

    cache_root = get_cache_root(template.name, cache_dir)
    version_dir = os.path.join(cache_root, directory)
    executable = resolve_executable_name(template, executable_name)

    return ResolvedPaths(
        cache_root=cache_root,
        version_dir=version_dir,
        executable_path=os.path.join(version_dir, executable),
        executable=executable,
    )
