# src/polymorph/cli.py

import argparse
import sys
from typing import List, Optional

from polymorph import log_utils
from polymorph.config import load_template
from polymorph.exceptions import PolymorphError
from polymorph.launcher import ensure_installed, run_exec
from polymorph.paths import resolve_paths
from polymorph.utils import get_polymorph_version


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser for the polymorph command line.

    Returns:
        argparse.ArgumentParser: Parser with the exec, path, fetch and version subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="polymorph",
        description="polymorph - run executables from a cache filled on first use",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Log level (DEBUG, INFO, WARNING, ERROR); overrides POLYMORPH_LOG_LEVEL",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Command to run an executable, fetching it on first use
    exec_parser = subparsers.add_parser(
        "exec",
        help="Execute a binary",
        description=(
            "Execute EXECUTABLE from the cache described by TEMPLATE, fetching it "
            "first if it is not cached. EXECUTABLE and every following argument "
            "are passed to the program unchanged."
        ),
    )
    exec_parser.add_argument("template", metavar="TEMPLATE", help="Template file")
    exec_parser.add_argument(
        "executable", metavar="EXECUTABLE", help="Executable name"
    )
    exec_parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        metavar="ARGS",
        help="Arguments for the program",
    )

    # Command to print the cached path of an executable
    path_parser = subparsers.add_parser(
        "path", help="Print the cache path of an executable without fetching it"
    )
    path_parser.add_argument("template", metavar="TEMPLATE", help="Template file")
    path_parser.add_argument(
        "executable", metavar="EXECUTABLE", help="Executable name"
    )

    # Command to populate the cache without executing
    fetch_parser = subparsers.add_parser(
        "fetch", help="Fetch an executable into the cache without running it"
    )
    fetch_parser.add_argument("template", metavar="TEMPLATE", help="Template file")
    fetch_parser.add_argument(
        "executable", metavar="EXECUTABLE", help="Executable name"
    )

    # Command to display version
    subparsers.add_parser("version", help="Display polymorph version")

    return parser


def _program_arguments(argv: List[str]) -> List[str]:
    """
    Return the arguments after EXECUTABLE in an `exec` command line, unchanged.

    argparse may drop a "--" at the start of a REMAINDER argument, so the
    program's arguments are sliced from the raw command line instead.
    """
    index = 0
    while argv[index] != "exec":
        index += 2 if argv[index] == "--log-level" else 1
    index += 1
    if argv[index] == "--":
        index += 1
    # Skip TEMPLATE and EXECUTABLE
    return argv[index + 2 :]


def run_path(template_file: str, executable_name: str) -> None:
    template = load_template(template_file)
    paths = resolve_paths(template, executable_name)
    print(paths.executable_path)


def run_fetch(template_file: str, executable_name: str) -> None:
    template = load_template(template_file)
    paths = resolve_paths(template, executable_name)
    if ensure_installed(template, paths):
        log_utils.logger.info(f"Installed {paths.version_dir}")
    else:
        log_utils.logger.info(f"Already installed: {paths.version_dir}")


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the polymorph command-line interface.

    Parses command-line arguments and dispatches the exec, path, fetch and version
    subcommands. Any polymorph error is logged as a single message and the process
    exits with status 1. On success `exec` does not return: the launched program
    replaces this process.
    """
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        log_utils.set_log_level(args.log_level)

    try:
        if args.command == "exec":
            program_args = _program_arguments(list(argv))
            sys.exit(run_exec(args.template, args.executable, program_args))
        elif args.command == "path":
            run_path(args.template, args.executable)
        elif args.command == "fetch":
            run_fetch(args.template, args.executable)
        elif args.command == "version":
            print(f"polymorph {get_polymorph_version()}")
        else:
            parser.print_help(sys.stderr)
            sys.exit(1)
    except PolymorphError as e:
        log_utils.logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
