"""Credential sources and the resolver that ranks them."""

import netrc
import sys
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional, TextIO

from sync_cmd.logging_setup import get_logger

if sys.platform == "win32":
    import ctypes
else:
    import termios

logger = get_logger()

# Windows console mode flag
ENABLE_ECHO_INPUT = 0x0004


@dataclass(frozen=True)
class LoginPair:
    """A user name and password, either of which may be empty."""

    user: str = ""
    password: str = field(default="", repr=False)

    def merged(self, other: "LoginPair") -> "LoginPair":
        """Return a pair where each non-empty field of ``other`` wins."""
        return LoginPair(other.user or self.user, other.password or self.password)


class CredentialSource(ABC):
    """One place credentials can come from."""

    @abstractmethod
    def fetch(self, host: str, current: LoginPair) -> LoginPair:
        """Return whatever this source knows for ``host``.

        Args:
            host: Host name of the target server
            current: Values resolved by higher-ranked sources so far

        Returns:
            LoginPair with empty fields where the source has nothing
        """


class EmbeddedCredentials(CredentialSource):
    """User info embedded in the target address."""

    def __init__(self, user: Optional[str], password: Optional[str]):
        self.pair = LoginPair(user or "", password or "")

    def fetch(self, host: str, current: LoginPair) -> LoginPair:
        return self.pair


class FlagCredentials(CredentialSource):
    """Values given with --user and --password."""

    def __init__(self, user: str = "", password: str = ""):
        self.pair = LoginPair(user, password)

    def fetch(self, host: str, current: LoginPair) -> LoginPair:
        return self.pair


class NetrcCredentials(CredentialSource):
    """Login looked up by host in a netrc file."""

    def __init__(self, path: Optional[str] = None):
        """Initialize the lookup.

        Args:
            path: netrc file to read, or None for ~/.netrc
        """
        self.path = path

    def fetch(self, host: str, current: LoginPair) -> LoginPair:
        try:
            entry = netrc.netrc(self.path).authenticators(host)
        except (OSError, netrc.NetrcParseError) as e:
            logger.warning(f"Could not read netrc file: {e}")
            return LoginPair()

        if entry is None:
            logger.debug(f"No netrc entry for host {host}")
            return LoginPair()

        login, _account, password = entry
        return LoginPair(login or "", password or "")


class InteractivePrompt(CredentialSource):
    """Asks on the terminal for whatever is still missing."""

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    def fetch(self, host: str, current: LoginPair) -> LoginPair:
        user = current.user
        if not user:
            self.stdout.write("Please enter user name: ")
            self.stdout.flush()
            user = _strip_newline(self.stdin.readline())

        password = current.password
        if not password:
            password = query_password(user, self.stdin, self.stdout)

        return LoginPair(user, password)


def resolve_credentials(sources: Iterable[CredentialSource], host: str) -> LoginPair:
    """Fold credential sources in rank order.

    Later sources override earlier ones only where they supply a non-empty
    value. Fields that no source fills stay empty; the server will reject
    the login later.
    """
    pair = LoginPair()
    for source in sources:
        pair = pair.merged(source.fetch(host, pair))
    return pair


def _strip_newline(line: str) -> str:
    return line.rstrip("\r\n")


def _get_terminal_mode(fd: int):
    if sys.platform == "win32":
        handle = ctypes.windll.kernel32.GetStdHandle(-10)  # STD_INPUT_HANDLE
        mode = ctypes.c_uint32()
        ctypes.windll.kernel32.GetConsoleMode(handle, ctypes.byref(mode))
        return mode.value
    return termios.tcgetattr(fd)


def _set_terminal_mode(fd: int, mode) -> None:
    if sys.platform == "win32":
        handle = ctypes.windll.kernel32.GetStdHandle(-10)
        ctypes.windll.kernel32.SetConsoleMode(handle, mode)
        return
    termios.tcsetattr(fd, termios.TCSANOW, mode)


def _without_echo(mode):
    if sys.platform == "win32":
        return mode & ~ENABLE_ECHO_INPUT
    new_mode = list(mode)
    new_mode[3] = new_mode[3] & ~termios.ECHO  # lflag
    return new_mode


@contextmanager
def echo_disabled(stream: TextIO) -> Iterator[None]:
    """Turn off terminal echo on ``stream`` for the duration of the block.

    The saved mode is written back however the block exits. Streams that are
    not terminals are left alone.
    """
    if not stream.isatty():
        yield
        return

    fd = stream.fileno()
    saved = _get_terminal_mode(fd)
    _set_terminal_mode(fd, _without_echo(saved))
    try:
        yield
    finally:
        _set_terminal_mode(fd, saved)


def query_password(
    user: str, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None
) -> str:
    """Ask for the password of ``user`` without echoing it."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    with echo_disabled(stdin):
        stdout.write(f"Password for user {user}: ")
        stdout.flush()
        line = stdin.readline()
    stdout.write("\n")
    return _strip_newline(line)


@dataclass
class Credentials:
    """HTTP credentials for the run.

    The user never changes after construction. The password may be filled
    in once, on first use, through ``prompt`` when it was not known up front.
    """

    user: str
    password: str = field(default="", repr=False)
    ssl_trusted: bool = False
    prompt: Optional[Callable[[str], str]] = field(default=None, repr=False, compare=False)

    @property
    def is_ready(self) -> bool:
        """True once a password is available."""
        return bool(self.password)

    def ask_from_user(self) -> bool:
        """Fill in the password through the prompt, if there is one.

        Returns:
            True if a password is available afterwards
        """
        if self.password:
            return True
        if self.prompt is None:
            logger.warning(f"No password for user {self.user} and no way to ask for one")
            return False
        self.password = self.prompt(self.user)
        return self.is_ready

    def ssl_is_trusted(self) -> bool:
        """Whether certificate errors are to be ignored (--trust)."""
        return self.ssl_trusted
