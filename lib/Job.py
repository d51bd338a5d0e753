"""
Job Definition Module

This module defines the UDP send job used by the scheduling
system. A Job represents one repeating UDP transmission, including
its destination, local ports, payload, interval, runtime state
and statistics.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

## import private pkgs
from PortKey import PortKey

## trailing window used for sends_per_sec
RATE_WINDOW_MS = 1000

def now_iso() -> str:
    ## UTC, millisecond precision, 'Z' suffix
    return datetime.now(timezone.utc).isoformat(timespec = 'milliseconds').replace('+00:00', 'Z')

def _stopped_event() -> threading.Event:
    event = threading.Event()
    event.set()
    return event

@dataclass
class JobStats(object):
    """Runtime statistics of a job, never persisted."""

    sends: int = 0
    missed: int = 0
    last_send_iso: str = ''
    last_err: str = ''
    start_iso: str = ''
    sends_per_sec: int = 0

    def public(self) -> dict:
        return {
            'sends': self.sends,
            'missed': self.missed,
            'lastSendIso': self.last_send_iso,
            'lastErr': self.last_err,
            'startIso': self.start_iso,
            'sendsPerSec': self.sends_per_sec,
        }

@dataclass
class Job(object):
    """
    Repeating UDP send job.

    Definition fields are fixed after creation, a job is changed
    by deleting and re-creating it.

    Attributes:
        id (int):
            Unique identifier, assigned by the registry and never reused.

        name (str):
            Display name, at most 64 characters.

        remote_ip (str):
            Destination dotted-quad IPv4 address.

        remote_port (int):
            Destination UDP port 1..65535.

        tx_port (int):
            Local port to send from. None lets the OS pick an
            ephemeral port shared by every job without a tx port.

        rx_port (int):
            Local port to listen on for replies. None means the
            job does not receive.

        interval_ms (int):
            Send period in milliseconds, at least 1.

        payload (list):
            Datagram content as ints 0..255.

        created_at (str):
            ISO-8601 creation timestamp.

        enabled (bool):
            True while the send loop is running.

        stop_event (threading.Event):
            Stop flag of the current run. A fresh event is created
            on every start, so a loop left over from a previous run
            keeps watching its own (set) event and exits.

        stats (JobStats):
            Runtime statistics.
    """

    id: int
    name: str
    remote_ip: str
    remote_port: int
    tx_port: Optional[int]
    rx_port: Optional[int]
    interval_ms: int
    payload: list
    created_at: str = field(default_factory = now_iso)
    enabled: bool = False
    stop_event: threading.Event = field(default_factory = _stopped_event, repr = False)
    stats: JobStats = field(default_factory = JobStats)
    rate_window: deque = field(default_factory = deque, repr = False)

    @property
    def tx_key(self) -> PortKey:
        return PortKey.from_port(self.tx_port)

    @property
    def rx_key(self) -> Optional[PortKey]:
        if self.rx_port is None:
            return None

        return PortKey.explicit(self.rx_port)

    def arm(self) -> threading.Event:
        """
        Replace the stop flag with a fresh, cleared event.

        Returns:
            threading.Event: Stop flag of the new run
        """

        self.stop_event = threading.Event()
        return self.stop_event

    def request_stop(self) -> None:
        self.stop_event.set()

    def record_send(self, now_ms: float) -> None:
        self.stats.sends += 1
        self.stats.last_send_iso = now_iso()
        self.rate_window.append(now_ms)

    def refresh_rate(self, now_ms: float) -> int:
        """
        Drop rate window samples older than one second.

        Args:
            now_ms (float): Current monotonic time in milliseconds

        Returns:
            int: Sends in the trailing second
        """

        while self.rate_window and now_ms - self.rate_window[0] > RATE_WINDOW_MS:
            self.rate_window.popleft()

        self.stats.sends_per_sec = len(self.rate_window)
        return self.stats.sends_per_sec

    def public(self) -> dict:
        """
        Observer facing snapshot of the job.

        Returns:
            dict: Job fields, payload length and statistics
        """

        return {
            'id': self.id,
            'name': self.name,
            'remoteIp': self.remote_ip,
            'remotePort': self.remote_port,
            'txPort': self.tx_port,
            'rxPort': self.rx_port,
            'intervalMs': self.interval_ms,
            'bytesLen': len(self.payload),
            'enabled': self.enabled,
            'createdAt': self.created_at,
            'stats': self.stats.public(),
        }

    def to_record(self) -> dict:
        ## persisted definition, statistics are left out
        return {
            'id': self.id,
            'name': self.name,
            'remoteIp': self.remote_ip,
            'remotePort': self.remote_port,
            'txPort': self.tx_port,
            'rxPort': self.rx_port,
            'intervalMs': self.interval_ms,
            'bytes': list(self.payload),
            'createdAt': self.created_at,
        }
