"""
Port Key Module

Socket pool entries are keyed by the local port they are bound to.
A job without an explicit port shares one OS-assigned ephemeral
socket, which is modelled as its own key rather than as port 0.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from dataclasses import dataclass
from typing import Optional

@dataclass(frozen = True)
class PortKey(object):
    """
    Tagged local port key.

    Attributes:
        port (int): Explicit port 1..65535, None for the ephemeral key
    """

    port: Optional[int] = None

    @classmethod
    def ephemeral(cls) -> 'PortKey':
        return cls(None)

    @classmethod
    def explicit(cls, port: int) -> 'PortKey':
        return cls(int(port))

    @classmethod
    def from_port(cls, port: Optional[int]) -> 'PortKey':
        """
        Build a key from an optional port.

        Args:
            port (int): Local port or None

        Returns:
            PortKey: explicit key when port is set, ephemeral otherwise
        """

        if port is None:
            return cls.ephemeral()

        return cls.explicit(port)

    @property
    def is_ephemeral(self) -> bool:
        return self.port is None

    @property
    def bind_port(self) -> int:
        ## 0 asks the OS for an ephemeral port
        return 0 if self.port is None else self.port

    def __str__(self) -> str:
        return 'ephemeral' if self.port is None else str(self.port)
