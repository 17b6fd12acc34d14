"""Outbound proxy selection."""

import urllib.request
from dataclasses import dataclass, field
from typing import Dict, Optional

from sync_cmd.logging_setup import get_logger

logger = get_logger()


@dataclass(frozen=True)
class ProxySettings:
    """Either one explicit HTTP proxy or whatever the system provides."""

    use_system: bool = True
    host: Optional[str] = None
    port: Optional[int] = None
    system_proxies: Dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> Optional[str]:
        if self.use_system:
            return None
        return f"http://{self.host}:{self.port}"

    def proxies(self) -> Dict[str, str]:
        """Return a scheme to proxy URL mapping for HTTP clients."""
        if self.use_system:
            return dict(self.system_proxies)
        return {"http": self.url, "https": self.url}


def _parse_proxy(value: str) -> Optional[tuple]:
    tokens = value.split(":")
    if len(tokens) == 3:
        # http: //192.168.178.23 : 8080
        host = tokens[1]
        if host.startswith("//"):
            host = host[2:]
    elif len(tokens) == 2:
        host = tokens[0]
    else:
        return None

    try:
        port = int(tokens[-1])
    except ValueError:
        return None

    if not host:
        return None
    return host, port


def configure_proxy(value: Optional[str]) -> ProxySettings:
    """Turn the --httpproxy value into proxy settings.

    A proxy that cannot be parsed is ignored and the system configuration is
    used, same as when no proxy was given.
    """
    if value:
        parsed = _parse_proxy(value)
        if parsed:
            host, port = parsed
            logger.info(f"Using HTTP proxy {host}:{port}")
            return ProxySettings(use_system=False, host=host, port=port)

    return ProxySettings(use_system=True, system_proxies=urllib.request.getproxies())
