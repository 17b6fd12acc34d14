"""Command line parsing into an immutable run configuration."""

import argparse
import os
import sys
from dataclasses import dataclass
from typing import List, NoReturn, Optional

from sync_cmd import __version__
from sync_cmd.config_loader import Settings

BINARY_NAME = "synccmd"

HELP_TEXT = f"""{BINARY_NAME} - command line file sync client tool

Usage: {BINARY_NAME} [OPTION] <source_dir> <server_url>

A proxy can either be set manually using --httpproxy.
Otherwise, the system proxy configuration will be used.

Options:
  --silent, -s           Don't be so verbose
  --httpproxy [proxy]    Specify a http proxy to use.
                         Proxy is http://server:port
  --trust                Trust the SSL certification.
  --exclude [file]       Exclude list file
  --unsyncedfolders [file]    File containing the list of unsynced folders (selective sync)
  --user, -u [name]      Use [name] as the login name
  --password, -p [pass]  Use [pass] as password
  -n                     Use netrc (5) for login
  --non-interactive      Do not block execution with interaction
  --nonshib              Use Non Shibboleth WebDAV authentication
  --davpath [path]       Custom themed dav path, overrides --nonshib
  --max-sync-retries [n] Retries maximum n times (default to 3)
  -h                     Sync hidden files, do not ignore them
  --version, -v          Display version and exit
"""


@dataclass(frozen=True)
class RunConfig:
    """Options for one invocation, fixed once parsed."""

    source_dir: str
    target_url: str
    user: str = ""
    password: str = ""
    proxy: Optional[str] = None
    silent: bool = False
    trust_ssl: bool = False
    use_netrc: bool = False
    interactive: bool = True
    ignore_hidden_files: bool = True
    non_shib: bool = False
    exclude: str = ""
    unsynced_folders: str = ""
    dav_path: str = ""
    max_sync_retries: int = 3


class _HelpOnErrorParser(argparse.ArgumentParser):
    """Parser that answers any usage error with the help text and exit 0."""

    def error(self, message: str) -> NoReturn:
        show_help()


def show_help() -> NoReturn:
    """Print the usage text and exit successfully."""
    sys.stdout.write(HELP_TEXT + "\n")
    sys.exit(0)


def show_version() -> NoReturn:
    """Print the version and exit successfully."""
    sys.stdout.write(f"{BINARY_NAME} version {__version__}\n")
    sys.exit(0)


def _retry_count(value: str) -> int:
    count = int(value)
    if count < 0:
        raise ValueError(value)
    return count


def normalize_source_dir(path: str) -> str:
    """Return the absolute form of ``path`` terminated by a separator."""
    path = os.path.abspath(os.path.expanduser(path))
    if not path.endswith("/"):
        path += "/"
    return path


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the command line surface."""
    parser = _HelpOnErrorParser(prog=BINARY_NAME, add_help=False, allow_abbrev=False)
    parser.add_argument("--silent", "-s", action="store_true")
    parser.add_argument("--httpproxy", dest="proxy")
    parser.add_argument("--trust", dest="trust_ssl", action="store_true")
    parser.add_argument("--exclude", default="")
    parser.add_argument("--unsyncedfolders", dest="unsynced_folders", default="")
    parser.add_argument("--user", "-u", default="")
    parser.add_argument("--password", "-p", default="")
    parser.add_argument("-n", dest="use_netrc", action="store_true")
    parser.add_argument("--non-interactive", dest="interactive", action="store_false")
    parser.add_argument("--nonshib", dest="non_shib", action="store_true")
    parser.add_argument("--davpath", dest="dav_path", default="")
    parser.add_argument("--max-sync-retries", dest="max_sync_retries", type=_retry_count)
    parser.add_argument("-h", dest="ignore_hidden_files", action="store_false")
    parser.add_argument("--version", "-v", action="store_true")
    return parser


def parse_options(argv: List[str], settings: Optional[Settings] = None) -> RunConfig:
    """Parse command line arguments (without the program name).

    Help, version and usage errors terminate the process with status 0. A
    source directory that does not exist terminates it with status 1.
    """
    settings = settings or Settings()

    if len(argv) < 2:
        if argv and argv[0] in ("-v", "--version"):
            show_version()
        show_help()

    # The positionals are always the last two tokens; everything before
    # them must be a known option
    *flags, source_arg, server_url = argv
    if source_arg.startswith("-") or server_url.startswith("-"):
        show_help()

    args = build_parser().parse_args(flags)

    if args.version:
        show_version()

    if not source_arg or not server_url:
        show_help()

    source_dir = normalize_source_dir(source_arg)
    if not os.path.exists(source_dir):
        sys.stderr.write(f"Source dir '{source_dir}' does not exist.\n")
        sys.exit(1)

    retries = args.max_sync_retries
    if retries is None:
        retries = settings.max_sync_retries

    return RunConfig(
        source_dir=source_dir,
        target_url=server_url,
        user=args.user,
        password=args.password,
        proxy=args.proxy,
        silent=args.silent,
        trust_ssl=args.trust_ssl,
        use_netrc=args.use_netrc,
        interactive=args.interactive,
        ignore_hidden_files=args.ignore_hidden_files,
        non_shib=args.non_shib,
        exclude=args.exclude,
        unsynced_folders=args.unsynced_folders,
        dav_path=args.dav_path,
        max_sync_retries=retries,
    )
