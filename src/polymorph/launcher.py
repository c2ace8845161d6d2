"""
Launch controller for polymorph.

Runs the cached executable described by a template, fetching it first when it is
missing:

    resolve -> exec -> (not found) fetch -> exec

Only a "file not found" exec failure triggers a fetch, and the fetch is attempted
once; any failure of the second exec is final.
"""

import errno
import os
import subprocess
from typing import Callable, List, Mapping, Optional

from polymorph.config import ExecTemplate, load_template
from polymorph.exceptions import (
    ConfigurationError,
    ExecFailedError,
    ExecNotFoundError,
    FetchError,
    PolymorphError,
)
from polymorph.fetchers import fetch
from polymorph.log_utils import logger
from polymorph.paths import ResolvedPaths, resolve_paths

Executor = Callable[[str, List[str]], int]
FetchFunc = Callable[[ExecTemplate, ResolvedPaths], None]


def _exec_error(path: str, error: OSError) -> PolymorphError:
    message = f"error executing {path}"
    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return ExecNotFoundError(message, path=path, details=str(error))
    return ExecFailedError(message, path=path, details=str(error))


def exec_executable(
    path: str, argv: List[str], env: Optional[Mapping[str, str]] = None
) -> int:
    """
    Replace the current process with `path`.

    On POSIX this is os.execve and does not return on success. Windows has no
    process-image replacement, so there the program runs as a child and its exit
    code is returned for the caller to exit with.

    Parameters:
        path (str): Executable to run.
        argv (List[str]): Full argument vector, argv[0] included.
        env (Optional[Mapping[str, str]]): Environment; defaults to os.environ.

    Returns:
        int: The child's exit code (emulated replacement only).

    Raises:
        ExecNotFoundError: If `path` does not exist.
        ExecFailedError: For any other failure to start `path`.
    """
    environment = dict(os.environ if env is None else env)
    if os.name == "nt":
        try:
            completed = subprocess.run([path, *argv[1:]], env=environment)
        except OSError as e:
            raise _exec_error(path, e) from e
        return completed.returncode

    try:
        os.execve(path, argv, environment)
    except OSError as e:
        raise _exec_error(path, e) from e
    return 0


def ensure_installed(
    template: ExecTemplate, paths: ResolvedPaths, fetcher: FetchFunc = fetch
) -> bool:
    """
    Fetch the version directory unless it already exists.

    Returns:
        bool: `True` if a fetch was performed, `False` if the cache was already populated.
    """
    if os.path.isdir(paths.version_dir):
        logger.debug(f"{paths.version_dir} already installed")
        return False
    _fetch(template, paths, fetcher)
    return True


def _fetch(template: ExecTemplate, paths: ResolvedPaths, fetcher: FetchFunc) -> None:
    try:
        fetcher(template, paths)
    except ConfigurationError:
        raise
    except PolymorphError as e:
        raise FetchError(f"error fetching {paths.executable}", details=str(e)) from e


def run_exec(
    template_file: str,
    executable_name: str,
    args: List[str],
    *,
    executor: Executor = exec_executable,
    fetcher: FetchFunc = fetch,
    cache_dir: Optional[str] = None,
) -> int:
    """
    Execute `executable_name` from the cache described by `template_file`.

    The cached path is executed directly. If it does not exist the template's fetcher
    populates the cache and execution is attempted exactly once more; a second
    not-found is reported like any other exec failure instead of fetching again.

    Parameters:
        template_file (str): Path of the template file.
        executable_name (str): Requested executable; passed on as argv[0].
        args (List[str]): Remaining arguments, forwarded verbatim.
        executor (Executor): Process-replacement function.
        fetcher (FetchFunc): Function populating the version directory.
        cache_dir (Optional[str]): Base cache directory override.

    Returns:
        int: Exit code of the launched program when replacement is emulated. With a
        real exec this function does not return on success.

    Raises:
        PolymorphError: On any fatal configuration, fetch or exec error.
    """
    template = load_template(template_file)
    paths = resolve_paths(template, executable_name, cache_dir)
    argv = [executable_name, *args]

    logger.debug(f"Executing {paths.executable_path}")
    try:
        return executor(paths.executable_path, argv)
    except ExecNotFoundError:
        logger.debug(f"{paths.executable_path} not found; fetching {template.name}")

    _fetch(template, paths, fetcher)
    return executor(paths.executable_path, argv)
