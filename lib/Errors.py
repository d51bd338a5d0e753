"""
UDP Jobs Error Module

This module defines the exception hierarchy shared by the
socket pool, the job registry and the lifecycle service.

Taxonomy:
- ValidationError: malformed ip / port / bytes / slot
- BindError: a local UDP port could not be bound
- TransmitError: a datagram could not be sent
- NotFoundError: unknown job id
- StartError: a job start failed and was rolled back
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

class UdpJobsError(Exception):
    """
    Base class of every error raised by the UDP jobs service.

    The control handler turns any UdpJobsError into an error
    message for the requester, str(e) is the message text.
    """

class ValidationError(UdpJobsError):
    """Caller supplied an invalid value."""

class BindError(UdpJobsError):
    """
    A UDP socket could not be bound to the requested port.

    Attributes:
        port (int): Requested local port, 0 for ephemeral
    """

    def __init__(self, port: int, message: str) -> None:
        super().__init__(message)
        self.port = port

class TransmitError(UdpJobsError):
    """sendto() failed or the socket is already closed."""

class NotFoundError(UdpJobsError):
    """Referenced job id does not exist."""

class StartError(UdpJobsError):
    """
    Job start failed after validation.

    Resources acquired by the failed attempt are already
    released when this is raised.
    """
