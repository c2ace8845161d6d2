"""
Fetching and publishing version directories.

A fetch downloads into a uniquely named temporary directory inside the tool's
cache root and publishes it with a single rename onto the version directory.
The version directory is therefore either absent or complete; a fetch that fails
at any point leaves only its temporary directory behind, and that is removed.
"""

import errno
import os
import shutil
import tempfile
import time
from typing import Dict, Optional, Union

import requests
import urllib3

from polymorph.archive import install_tarball
from polymorph.config import BinaryFetcher, ExecTemplate, TarballFetcher
from polymorph.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    EXECUTABLE_PERMISSIONS,
    TEMP_DIR_PREFIX,
)
from polymorph.exceptions import (
    ConfigurationError,
    FileSystemError,
    HTTPError,
    NetworkError,
    TemplateExpansionError,
)
from polymorph.log_utils import logger
from polymorph.paths import ResolvedPaths
from polymorph.templates import expand_template
from polymorph.utils import create_session

Fetcher = Union[TarballFetcher, BinaryFetcher]

# Errors surfaced while reading a streamed response body
STREAM_ERRORS = (requests.exceptions.RequestException, urllib3.exceptions.HTTPError)


def select_fetcher(template: ExecTemplate) -> Fetcher:
    """
    Return the single fetcher declared by `template`.

    Raises:
        ConfigurationError: If the template declares no fetcher or both.
    """
    if template.tarball is not None and template.binary is not None:
        raise ConfigurationError(
            "multiple fetchers specified", details=f"template {template.name}"
        )
    if template.tarball is not None:
        return template.tarball
    if template.binary is not None:
        return template.binary
    raise ConfigurationError(
        "no fetcher specified", details=f"template {template.name}"
    )


def _expand_url(fetcher: Fetcher, kind: str, params: Dict[str, str]) -> str:
    try:
        return expand_template(fetcher.url, params)
    except TemplateExpansionError as e:
        e.message = f"error expanding {kind} fetch url template: {e.message}"
        raise


def open_url(session: requests.Session, url: str) -> requests.Response:
    """
    Issue a streaming GET for `url`.

    Returns:
        requests.Response: A successful (2xx) response; the caller must close it.

    Raises:
        NetworkError: On transport failures.
        HTTPError: On a non-success status code.
    """
    try:
        response = session.get(
            url, stream=True, timeout=(DEFAULT_CONNECT_TIMEOUT, None)
        )
    except requests.exceptions.RequestException as e:
        raise NetworkError(f"error downloading {url}", url=url, details=str(e)) from e

    logger.debug(
        f"Received HTTP response status code: {response.status_code} for URL: {url}"
    )
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        response.close()
        raise HTTPError(
            f"error downloading {url}",
            status_code=response.status_code,
            url=url,
            details=str(e),
        ) from e
    return response


def fetch_tarball(
    fetcher: TarballFetcher,
    params: Dict[str, str],
    temp_dir: str,
    session: requests.Session,
) -> None:
    """
    Download the tarball described by `fetcher` and extract it into `temp_dir`.

    Raises:
        TemplateExpansionError: If the URL template cannot be expanded.
        NetworkError, HTTPError: If the download fails.
        DecodeError, FileSystemError: If extraction fails.
    """
    tarball_url = _expand_url(fetcher, "tarball", params)

    logger.info(f"Downloading tarball from {tarball_url}...")
    start_time = time.time()
    response = open_url(session, tarball_url)
    try:
        # Undo any transfer Content-Encoding; the tarball's own gzip layer stays.
        response.raw.decode_content = True
        written = install_tarball(response.raw, temp_dir)
    except STREAM_ERRORS as e:
        raise NetworkError(
            f"error downloading tarball {tarball_url}", url=tarball_url, details=str(e)
        ) from e
    finally:
        response.close()

    logger.debug(
        "Extracted %d entries from %s in %.2fs",
        written,
        tarball_url,
        time.time() - start_time,
    )


def fetch_binary(
    fetcher: BinaryFetcher,
    params: Dict[str, str],
    temp_dir: str,
    executable: str,
    session: requests.Session,
) -> None:
    """
    Download the executable described by `fetcher` to `temp_dir/executable`.

    The file is created with executable permissions before any byte is written.

    Raises:
        TemplateExpansionError: If the URL template cannot be expanded.
        NetworkError, HTTPError: If the download fails.
        FileSystemError: If the file cannot be written.
    """
    binary_url = _expand_url(fetcher, "binary", params)
    file_path = os.path.join(temp_dir, executable)

    logger.info(f"Downloading binary from {binary_url}...")
    start_time = time.time()
    response = open_url(session, binary_url)
    try:
        try:
            fd = os.open(
                file_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, EXECUTABLE_PERMISSIONS
            )
        except OSError as e:
            raise FileSystemError(
                f"error opening file {file_path}", path=file_path, details=str(e)
            ) from e

        downloaded_bytes = 0
        with os.fdopen(fd, "wb") as f:
            chunks = response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE)
            while True:
                try:
                    chunk = next(chunks, None)
                except STREAM_ERRORS as e:
                    raise NetworkError(
                        f"error downloading binary {binary_url}",
                        url=binary_url,
                        details=str(e),
                    ) from e
                if chunk is None:
                    break
                try:
                    f.write(chunk)
                except OSError as e:
                    raise FileSystemError(
                        f"error writing to {file_path}", path=file_path, details=str(e)
                    ) from e
                downloaded_bytes += len(chunk)
    finally:
        response.close()

    logger.debug(
        "Downloaded %d bytes from %s in %.2fs",
        downloaded_bytes,
        binary_url,
        time.time() - start_time,
    )


def _is_lost_race(error: OSError, version_dir: str) -> bool:
    if isinstance(error, FileExistsError) or error.errno in (
        errno.EEXIST,
        errno.ENOTEMPTY,
    ):
        return os.path.isdir(version_dir)
    return False


def publish(temp_dir: str, version_dir: str) -> bool:
    """
    Atomically rename `temp_dir` to `version_dir`.

    Returns:
        bool: `True` if this call published the directory, `False` if another process
        had already published `version_dir` (the caller's copy is redundant).

    Raises:
        FileSystemError: If the rename fails for any other reason.
    """
    try:
        os.rename(temp_dir, version_dir)
    except OSError as e:
        if _is_lost_race(e, version_dir):
            logger.info(f"{version_dir} was installed by another process; using it")
            return False
        raise FileSystemError(
            f"error renaming {temp_dir} to {version_dir}",
            path=version_dir,
            details=str(e),
        ) from e
    logger.debug(f"Published {version_dir}")
    return True


def _remove_temp_dir(temp_dir: str) -> None:
    if not os.path.exists(temp_dir):
        return
    try:
        shutil.rmtree(temp_dir)
    except OSError as e:
        logger.warning(f"Error removing temporary directory {temp_dir}: {e}")


def _make_temp_dir(paths: ResolvedPaths) -> str:
    for directory in (paths.cache_root, os.path.dirname(paths.version_dir)):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise FileSystemError(
                f"error creating cache dir {directory}", path=directory, details=str(e)
            ) from e

    prefix = f"{TEMP_DIR_PREFIX}{os.path.basename(paths.version_dir)}-"
    try:
        return tempfile.mkdtemp(prefix=prefix, dir=paths.cache_root)
    except OSError as e:
        raise FileSystemError(
            f"error creating temporary directory in {paths.cache_root}",
            path=paths.cache_root,
            details=str(e),
        ) from e


def fetch(
    template: ExecTemplate,
    paths: ResolvedPaths,
    session: Optional[requests.Session] = None,
) -> None:
    """
    Populate `paths.version_dir` using the fetcher declared by `template`.

    The fetcher is chosen before anything is created on disk or requested over the
    network. Files are installed into a fresh temporary directory inside
    `paths.cache_root`, which is then renamed onto the version directory. If another
    process published the same version directory first, that copy is used and this
    fetch still succeeds.

    Parameters:
        template (ExecTemplate): Parsed template.
        paths (ResolvedPaths): Resolved cache paths for the requested executable.
        session (Optional[requests.Session]): HTTP session to use; a new one is created
            (and closed afterwards) when omitted.

    Raises:
        ConfigurationError: If the template declares no fetcher or both.
        PolymorphError: Any download, decode or filesystem error; the version
            directory is left untouched.
    """
    fetcher = select_fetcher(template)

    own_session = session is None
    http = create_session() if own_session else session
    temp_dir = _make_temp_dir(paths)
    try:
        if isinstance(fetcher, TarballFetcher):
            fetch_tarball(fetcher, template.params, temp_dir, http)
        else:
            fetch_binary(fetcher, template.params, temp_dir, paths.executable, http)
        publish(temp_dir, paths.version_dir)
    finally:
        _remove_temp_dir(temp_dir)
        if own_session:
            http.close()
