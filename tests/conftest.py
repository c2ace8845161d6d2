import io
import tarfile

import platformdirs
import pytest
import requests
from urllib3.response import HTTPResponse

_NETWORK_BLOCK_MSG = (
    "Network access is blocked during tests. Mock requests.* or Session.request."
)


def _block_network(*_args, **_kwargs):
    """
    Prevent network calls in tests by raising a RuntimeError.

    Raises:
        RuntimeError: with `_NETWORK_BLOCK_MSG` indicating that network access is blocked during tests.
    """
    raise RuntimeError(_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the markers used to group polymorph tests.

    Parameters:
        config: pytest.Config
            The pytest configuration object.
    """
    config.addinivalue_line("markers", "unit: fast, isolated unit tests")
    config.addinivalue_line(
        "markers", "integration: tests exercising several modules together"
    )


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point the user cache directory at a fresh temporary directory and clear every
    POLYMORPH_* environment variable so tests never see the developer's cache or settings.
    """
    base = tmp_path_factory.mktemp("polymorph")
    cache_dir = base / "cache"
    cache_dir.mkdir(parents=True, exist_ok=True)

    for name in (
        "POLYMORPH_CACHE_DIR",
        "POLYMORPH_LOG_LEVEL",
        "POLYMORPH_LOG_DIR",
        "POLYMORPH_HTTP_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )


def pytest_runtest_setup():
    """
    Prevent real network requests during tests by replacing HTTP entry points with blocking callables.
    """
    requests.get = _block_network
    requests.head = _block_network
    requests.Session.request = _block_network


@pytest.fixture
def cache_dir():
    """The isolated user cache directory for the current test."""
    return platformdirs.user_cache_dir()


class InterruptedBody(io.BytesIO):
    """Response body that yields `data` and then fails like a dropped connection."""

    def __init__(self, data: bytes):
        super().__init__(data)
        self._remaining = len(data)

    def read(self, size=-1):
        if self._remaining <= 0:
            raise ConnectionResetError("connection reset by peer")
        chunk = super().read(size)
        self._remaining -= len(chunk)
        return chunk


@pytest.fixture
def interrupted_body():
    """Factory for response bodies that drop the connection after their data."""
    return InterruptedBody


def make_response(url, body=b"", status=200):
    """
    Build a real requests.Response whose raw stream is an urllib3 HTTPResponse over `body`.

    Parameters:
        url (str): URL recorded on the response.
        body (bytes | io.BytesIO): Payload, or a file-like object to stream from.
        status (int): HTTP status code.
    """
    if isinstance(body, bytes):
        body = io.BytesIO(body)
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Not Found"
    response.url = url
    response.raw = HTTPResponse(
        body=body, status=status, preload_content=False, decode_content=False
    )
    return response


class FakeSession:
    """
    Stand-in for requests.Session serving canned responses by URL.

    Values in `responses` may be bytes (200 OK), a (status, bytes) tuple, a file-like body,
    an exception instance to raise from get(), or a callable returning any of those.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.requested = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requested.append(url)
        if url not in self.responses:
            return make_response(url, b"", status=404)
        value = self.responses[url]
        if callable(value):
            value = value()
        if isinstance(value, Exception):
            raise value
        if isinstance(value, tuple):
            status, payload = value
            return make_response(url, payload, status=status)
        return make_response(url, value)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    """Factory for FakeSession instances."""
    return FakeSession


def build_tarball(entries, compression="gz"):
    """
    Build a tarball in memory.

    Parameters:
        entries: Iterable of (name, content, mode) tuples. `content` is bytes for a regular
            file, None for a directory, or a str for a symlink target.
        compression (str): tarfile compression suffix.

    Returns:
        bytes: The compressed archive.
    """
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode=f"w:{compression}") as tar:
        for name, content, mode in entries:
            info = tarfile.TarInfo(name)
            info.mode = mode
            if content is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            elif isinstance(content, str):
                info.type = tarfile.SYMTYPE
                info.linkname = content
                tar.addfile(info)
            else:
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture
def tarball():
    """Factory building gzip-compressed tarballs from (name, content, mode) tuples."""
    return build_tarball


@pytest.fixture
def write_template(tmp_path):
    """
    Factory writing a template file into tmp_path and returning its path as a string.
    """

    def _write(content, name="tool.toml"):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write
