"""Clock abstraction for testable time handling in the authenticator core.

Session expiry and the ``authenticated_at`` stamp of an authentication result
depend on an injected ``Clock`` rather than calling ``time.time()`` directly.

Example
-------
>>> from openid_authenticator.core.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()
