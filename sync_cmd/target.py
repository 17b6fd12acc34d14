"""Normalization of the server address into account and remote paths."""

from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from sync_cmd.credentials import Credentials, LoginPair
from sync_cmd.logging_setup import get_logger

logger = get_logger()

DEFAULT_DAV_PATH = "remote.php/webdav/"
NON_SHIB_DAV_PATH = "remote.php/nonshib-webdav/"

# Scheme marker used between address parsing and the engine; never sent
# over the network.
MARKER_SCHEME = "owncloud"


class AccountError(Exception):
    """Raised when no account can be built from the server address."""

    pass


class Account:
    """Per-server settings that shape the remote paths."""

    def __init__(self, non_shib: bool = False, dav_path: str = ""):
        self.non_shib = non_shib
        self._dav_path = ""
        if dav_path:
            self.set_dav_path(dav_path)

    def set_dav_path(self, dav_path: str) -> None:
        """Override the remote protocol sub-path."""
        dav_path = dav_path.lstrip("/")
        if not dav_path.endswith("/"):
            dav_path += "/"
        self._dav_path = dav_path

    @property
    def dav_path(self) -> str:
        """The remote protocol sub-path, always ending with '/'."""
        if self._dav_path:
            return self._dav_path
        return NON_SHIB_DAV_PATH if self.non_shib else DEFAULT_DAV_PATH


@dataclass(frozen=True)
class Target:
    """Where one sync run points on the server."""

    url: str  # account URL: real scheme, credentials, base path
    remote_url: str  # marker-scheme URL including the dav path
    remote_path: str  # path of remote_url
    base_path: str
    folder: str

    @property
    def host(self) -> str:
        return urlsplit(self.url).hostname or ""


def build_marker_url(raw_url: str, account: Account) -> str:
    """Terminate the address, add the dav path and rewrite to the marker scheme."""
    url = raw_url.strip()
    if "://" not in url:
        url = "http://" + url
    if not url.endswith("/"):
        url += "/"

    if account.dav_path not in url:
        url += account.dav_path

    if url.startswith("http"):
        url = MARKER_SCHEME + url[len("http"):]

    return url


def embedded_credentials(marker_url: str) -> LoginPair:
    """Return the user info carried by the address, if any."""
    parts = urlsplit(marker_url)
    return LoginPair(unquote(parts.username or ""), unquote(parts.password or ""))


def _netloc(host: str, port, user: str, password: str) -> str:
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None else f"{host}:{port}"
    if user:
        userinfo = quote(user, safe="")
        if password:
            userinfo += ":" + quote(password, safe="")
        netloc = f"{userinfo}@{netloc}"
    return netloc


def normalize_target(marker_url: str, account: Account, credentials: Credentials) -> Target:
    """Split the marker URL into the account URL and the synced folder.

    Credentials already present in the address are kept; missing parts are
    filled from ``credentials``.

    Raises:
        AccountError: If the address carries no host
    """
    parts = urlsplit(marker_url)
    if not parts.hostname:
        raise AccountError(f"Could not initialize account for '{marker_url}'")

    try:
        port = parts.port
    except ValueError as e:
        raise AccountError(f"Invalid port in '{marker_url}': {e}") from e

    user = unquote(parts.username or "") or credentials.user
    password = unquote(parts.password or "") or credentials.password

    base_path, _, folder = parts.path.partition(account.dav_path)
    base_path = unquote(base_path)
    folder = unquote(folder)
    scheme = parts.scheme.replace(MARKER_SCHEME, "http")

    netloc = _netloc(parts.hostname, port, user, password)
    url = urlunsplit((scheme, netloc, quote(base_path), "", ""))
    logger.debug(f"Remote folder '{folder}' below base path '{base_path}'")

    return Target(
        url=url,
        remote_url=marker_url,
        remote_path=unquote(parts.path),
        base_path=base_path,
        folder=folder,
    )
