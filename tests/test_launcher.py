"""
Launch controller tests.

Covers the resolve -> exec -> fetch-on-miss -> exec state machine with injected
executors and fetchers, plus exec_executable's error classification.
"""

import errno
import os

import pytest

from polymorph import launcher
from polymorph.exceptions import (
    ConfigFileError,
    ConfigurationError,
    ExecFailedError,
    ExecNotFoundError,
    FetchError,
    NetworkError,
)

TEMPLATE = """
name = "grep-like"
directory = "v{{.version}}"

[params]
version = "1.2.3"

[executables]
foo = "foo-v2"

[binary]
url = "https://example.test/grep-{{.version}}"
"""


class RecordingExecutor:
    """Executor stub that fails with the queued errors, then returns an exit code."""

    def __init__(self, *errors, exit_code=0):
        self.errors = list(errors)
        self.exit_code = exit_code
        self.calls = []

    def __call__(self, path, argv):
        self.calls.append((path, list(argv)))
        if self.errors:
            raise self.errors.pop(0)
        return self.exit_code


class RecordingFetcher:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def __call__(self, template, paths):
        self.calls.append((template.name, paths.version_dir))
        if self.error is not None:
            raise self.error


def _not_found(path="/x"):
    return ExecNotFoundError(f"error executing {path}", path=path)


@pytest.mark.unit
class TestRunExec:
    """Test run_exec."""

    def test_cached_executable_runs_without_fetch(self, write_template):
        executor = RecordingExecutor(exit_code=3)
        fetcher = RecordingFetcher()

        code = launcher.run_exec(
            write_template(TEMPLATE),
            "grep-like",
            ["-n", "pattern"],
            executor=executor,
            fetcher=fetcher,
        )

        assert code == 3
        assert fetcher.calls == []
        path, argv = executor.calls[0]
        assert path.endswith(os.path.join("polymorph", "grep-like", "v1.2.3", "grep-like"))
        assert argv == ["grep-like", "-n", "pattern"]

    def test_not_found_fetches_then_retries_once(self, write_template):
        executor = RecordingExecutor(_not_found())
        fetcher = RecordingFetcher()

        code = launcher.run_exec(
            write_template(TEMPLATE), "foo", ["--flag"], executor=executor, fetcher=fetcher
        )

        assert code == 0
        assert len(fetcher.calls) == 1
        assert len(executor.calls) == 2
        assert executor.calls[0] == executor.calls[1]
        assert executor.calls[0][0].endswith("foo-v2")
        assert executor.calls[0][1] == ["foo", "--flag"]

    def test_second_not_found_is_fatal_without_refetch(self, write_template):
        executor = RecordingExecutor(_not_found(), _not_found())
        fetcher = RecordingFetcher()

        with pytest.raises(ExecNotFoundError):
            launcher.run_exec(
                write_template(TEMPLATE), "foo", [], executor=executor, fetcher=fetcher
            )

        assert len(fetcher.calls) == 1
        assert len(executor.calls) == 2

    def test_other_exec_failure_does_not_fetch(self, write_template):
        executor = RecordingExecutor(
            ExecFailedError("error executing /x", path="/x", details="Permission denied")
        )
        fetcher = RecordingFetcher()

        with pytest.raises(ExecFailedError, match="Permission denied"):
            launcher.run_exec(
                write_template(TEMPLATE), "grep-like", [], executor=executor, fetcher=fetcher
            )

        assert fetcher.calls == []
        assert len(executor.calls) == 1

    def test_fetch_failure_is_wrapped(self, write_template):
        executor = RecordingExecutor(_not_found())
        cause = NetworkError("error downloading", url="https://example.test/grep-1.2.3")
        fetcher = RecordingFetcher(error=cause)

        with pytest.raises(FetchError) as exc_info:
            launcher.run_exec(
                write_template(TEMPLATE), "grep-like", [], executor=executor, fetcher=fetcher
            )

        assert exc_info.value.__cause__ is cause
        assert "error fetching grep-like" in str(exc_info.value)
        assert len(executor.calls) == 1

    def test_configuration_error_from_fetch_is_not_wrapped(self, write_template):
        executor = RecordingExecutor(_not_found())
        fetcher = RecordingFetcher(error=ConfigurationError("no fetcher specified"))

        with pytest.raises(ConfigurationError, match="no fetcher specified"):
            launcher.run_exec(
                write_template(TEMPLATE), "grep-like", [], executor=executor, fetcher=fetcher
            )

    def test_missing_fetcher_still_runs_cached_copy(self, write_template):
        content = TEMPLATE.split("[binary]")[0]
        executor = RecordingExecutor()

        launcher.run_exec(write_template(content), "grep-like", [], executor=executor)

        assert len(executor.calls) == 1

    def test_resolution_error_stops_before_exec(self, tmp_path):
        executor = RecordingExecutor()

        with pytest.raises(ConfigFileError):
            launcher.run_exec(
                str(tmp_path / "missing.toml"), "grep-like", [], executor=executor
            )

        assert executor.calls == []


@pytest.mark.unit
class TestEnsureInstalled:
    """Test ensure_installed."""

    def test_fetches_when_absent(self, tmp_path):
        from polymorph.config import ExecTemplate
        from polymorph.paths import resolve_paths

        template = ExecTemplate(name="tool", directory="v1")
        paths = resolve_paths(template, "tool", cache_dir=str(tmp_path))
        fetcher = RecordingFetcher()

        assert launcher.ensure_installed(template, paths, fetcher=fetcher) is True
        assert len(fetcher.calls) == 1

    def test_skips_when_present(self, tmp_path):
        from polymorph.config import ExecTemplate
        from polymorph.paths import resolve_paths

        template = ExecTemplate(name="tool", directory="v1")
        paths = resolve_paths(template, "tool", cache_dir=str(tmp_path))
        os.makedirs(paths.version_dir)
        fetcher = RecordingFetcher()

        assert launcher.ensure_installed(template, paths, fetcher=fetcher) is False
        assert fetcher.calls == []


@pytest.mark.unit
@pytest.mark.skipif(os.name == "nt", reason="os.execve is POSIX only")
class TestExecExecutable:
    """Test exec_executable error classification."""

    def test_enoent_is_not_found(self, mocker):
        mocker.patch.object(
            launcher.os, "execve", side_effect=FileNotFoundError(errno.ENOENT, "nope")
        )
        with pytest.raises(ExecNotFoundError) as exc_info:
            launcher.exec_executable("/missing/tool", ["tool"])
        assert exc_info.value.path == "/missing/tool"

    @pytest.mark.parametrize(
        "error",
        [
            PermissionError(errno.EACCES, "Permission denied"),
            OSError(errno.ENOEXEC, "Exec format error"),
        ],
    )
    def test_other_errors_are_failures(self, mocker, error):
        mocker.patch.object(launcher.os, "execve", side_effect=error)
        with pytest.raises(ExecFailedError) as exc_info:
            launcher.exec_executable("/bin/tool", ["tool"])
        assert error.strerror in str(exc_info.value)

    def test_passes_argv_and_environment(self, mocker, monkeypatch):
        monkeypatch.setenv("POLYMORPH_TEST_VAR", "1")
        execve = mocker.patch.object(launcher.os, "execve")

        launcher.exec_executable("/bin/tool", ["tool", "--flag"])

        path, argv, env = execve.call_args.args
        assert path == "/bin/tool"
        assert argv == ["tool", "--flag"]
        assert env["POLYMORPH_TEST_VAR"] == "1"

    def test_real_missing_file(self, tmp_path):
        with pytest.raises(ExecNotFoundError):
            launcher.exec_executable(str(tmp_path / "absent"), ["absent"])

    def test_real_non_executable_file(self, tmp_path):
        target = tmp_path / "data"
        target.write_bytes(b"not a program")
        target.chmod(0o644)
        with pytest.raises(ExecFailedError):
            launcher.exec_executable(str(target), ["data"])


@pytest.mark.unit
def test_emulated_exec_on_windows(mocker):
    mocker.patch.object(launcher.os, "name", "nt")
    run = mocker.patch.object(
        launcher.subprocess, "run", return_value=mocker.Mock(returncode=7)
    )

    assert launcher.exec_executable("C:/tool.exe", ["tool", "a"]) == 7
    assert run.call_args.args[0] == ["C:/tool.exe", "a"]


@pytest.mark.unit
def test_emulated_exec_not_found(mocker):
    mocker.patch.object(launcher.os, "name", "nt")
    mocker.patch.object(
        launcher.subprocess, "run", side_effect=FileNotFoundError(errno.ENOENT, "nope")
    )

    with pytest.raises(ExecNotFoundError):
        launcher.exec_executable("C:/tool.exe", ["tool"])
