"""URL helpers used to reconstruct request URLs byte-for-byte.

The same helpers are used when a request is saved and when it is compared
later, so two reconstructions of the same inbound request are identical.
"""

from __future__ import annotations

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}


def scheme_host_port(scheme: str, host: str, port: int | None) -> str:
    """Return ``scheme://host[:port]``, omitting the scheme's default port."""
    scheme = scheme.lower()
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"  # IPv6 literal
    if port is None or port <= 0 or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def add_paths(base: str, path: str | None) -> str:
    """Join two URI paths with exactly one ``/`` between them."""
    if not path:
        return base or "/"
    if not base:
        return path
    if base.endswith("/") and path.startswith("/"):
        return base + path[1:]
    if base.endswith("/") or path.startswith("/"):
        return base + path
    return f"{base}/{path}"


def strip_query(path: str) -> str:
    """Return *path* without any ``?query`` suffix."""
    idx = path.find("?")
    return path if idx < 0 else path[:idx]
