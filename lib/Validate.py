"""
Input Validation Module

This module holds the validation helpers applied to job
definitions, manual sends and packet slots.

Responsibilities:
- Coerce loosely typed request fields into integers
- Check IPv4 addresses and UDP ports
- Normalize byte sequences
- Raise ValidationError with operator facing messages
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import re
from typing import Optional

## import private pkgs
from Errors import ValidationError

## one dotted-quad octet, decimal digits only
_OCTET_RE = re.compile(r'[0-9]+')

def to_int(value, default: int = 0) -> int:
    """
    Coerce a request field into an int.

    Floats are truncated toward zero, anything that does not
    parse falls back to default.

    Args:
        value (object): Raw field value
        default (int): Fallback value

    Returns:
        int: Coerced value
    """

    if isinstance(value, bool):
        return int(value)

    try:
        return int(float(value))

    except (TypeError, ValueError, OverflowError):
        return default

def optional_port(value) -> Optional[int]:
    ## None and "" both mean "not set"
    if value is None or value == '':
        return None

    return to_int(value)

def is_valid_port(port) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535

def is_valid_ipv4(ip) -> bool:
    parts = str(ip).split('.')
    if len(parts) != 4:
        return False

    for part in parts:
        if not _OCTET_RE.fullmatch(part):
            return False

        if int(part) > 255:
            return False

    return True

def clamp_bytes(values) -> Optional[list]:
    """
    Normalize a byte sequence.

    Args:
        values (list): Sequence of numbers

    Returns:
        list: List of ints 0..255, None if any element is invalid
    """

    if not isinstance(values, (list, tuple)):
        return None

    out = []
    for value in values:
        try:
            n = float(value)

        except (TypeError, ValueError):
            return None

        if n != n or n < 0 or n > 255:
            return None

        out.append(int(n))

    return out

def check_destination(remote_ip, remote_port, tx_port = None) -> None:
    """
    Validate a send destination and its optional tx port.

    Raises:
        ValidationError: On the first invalid field
    """

    if not is_valid_ipv4(remote_ip):
        raise ValidationError('Invalid IPv4 remote IP.')

    if not is_valid_port(remote_port):
        raise ValidationError('Invalid remote port.')

    if tx_port is not None and not is_valid_port(tx_port):
        raise ValidationError('Invalid TX port.')

def check_job_fields(remote_ip, remote_port, tx_port, rx_port, payload) -> None:
    """
    Validate the fields a job needs before it may start.

    Raises:
        ValidationError: On the first invalid field
    """

    check_destination(remote_ip, remote_port, tx_port)

    if rx_port is not None and not is_valid_port(rx_port):
        raise ValidationError('Invalid RX port.')

    if not payload:
        raise ValidationError('Bytes cannot be empty.')
