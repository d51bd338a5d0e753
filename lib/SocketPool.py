"""
Shared UDP Socket Pool Module

This module owns the UDP sockets used by send jobs and manual
sends. One socket exists per local port key and is shared by
every job that sends from or listens on that port.

Responsibilities:
- Bind sockets on first use and close them on last release
- Reference count socket users
- Track which jobs listen on each socket
- Fan received datagrams out to listening jobs
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import socket
import threading
from threading import RLock
from contextlib import contextmanager
from typing import Optional

## import private pkgs
from Job import now_iso
from PortKey import PortKey
from Errors import BindError, TransmitError

class PoolEntry(object):
    """
    One bound UDP socket and its users.

    Attributes:
        key (PortKey): Pool key
        sock (socket.socket): Bound socket
        refcount (int): Number of retained references
        listeners (set): Job ids interested in inbound datagrams
    """

    def __init__(self, key: PortKey, sock: socket.socket) -> None:
        self.key = key
        self.sock = sock
        self.refcount = 0
        self.listeners = set()
        self.closed = threading.Event()
        self.thread = None

    @property
    def local_port(self) -> int:
        return self.sock.getsockname()[1]

    def send(self, payload, remote_ip: str, remote_port: int) -> int:
        """
        Send one datagram.

        Returns:
            int: Number of bytes sent

        Raises:
            TransmitError: When the socket is closed or sendto fails
        """

        if self.closed.is_set():
            raise TransmitError('socket %s is closed' % (self.key))

        try:
            return self.sock.sendto(bytes(payload), (remote_ip, remote_port))

        except OSError as e:
            raise TransmitError(str(e)) from e

class SocketPool(object):
    """
    Reference counted pool of shared UDP sockets.

    The key map, reference counts and listener sets are only
    touched under the pool lock, socket creation included, so
    two callers can never bind the same key twice.
    """

    def __init__(self, logger: object, registry: object, notifier: object, bind_host: str = '0.0.0.0', recv_timeout: float = 0.2, recv_buffer: int = 65535) -> None:
        """
        Initialize the pool.

        Args:
            logger (object): Application logger
            registry (JobRegistry): Job lookup used by datagram fan-out
            notifier (Notifier): Destination of udp_rx events
            bind_host (str): Local address sockets bind to
            recv_timeout (float): Receive poll timeout in seconds
            recv_buffer (int): Maximum datagram size read

        Returns:
            None
        """

        self.logger = logger
        self.registry = registry
        self.notifier = notifier
        self.bind_host = bind_host
        self.recv_timeout = recv_timeout
        self.recv_buffer = recv_buffer

        ## key -> PoolEntry
        self._entries = {}
        self._lock = RLock()

    def acquire_or_create(self, key: PortKey) -> PoolEntry:
        """
        Return the entry for key, binding a new socket if needed.

        Nothing is registered when binding fails.

        Args:
            key (PortKey): Local port key

        Returns:
            PoolEntry: Existing or newly bound entry

        Raises:
            BindError: When the socket cannot be bound
        """

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                return entry

            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                sock.bind((self.bind_host, key.bind_port))

            except OSError as e:
                sock.close()
                self.logger.warning({'status': 'bind failed', 'key': str(key), 'error': str(e)})
                raise BindError(key.bind_port, 'bind %s:%s failed: %s' % (self.bind_host, key, e)) from e

            ## short timeout so the receive thread notices close()
            sock.settimeout(self.recv_timeout)

            entry = PoolEntry(key, sock)
            entry.thread = threading.Thread(target = self._receive, args = (entry,), name = 'udp-rx-%s' % (key), daemon = True)
            self._entries[key] = entry
            entry.thread.start()

        self.logger.info({'status': 'socket bound', 'key': str(key), 'local_port': entry.local_port})
        return entry

    def acquire(self, key: PortKey) -> PoolEntry:
        """
        Acquire an entry and retain one reference in a single step.

        Args:
            key (PortKey): Local port key

        Returns:
            PoolEntry: Retained entry

        Raises:
            BindError: When the socket cannot be bound
        """

        with self._lock:
            entry = self.acquire_or_create(key)
            entry.refcount += 1
            return entry

    def retain(self, key: PortKey) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.refcount += 1

    def release(self, key: PortKey) -> None:
        """
        Drop one reference, closing the socket at zero.

        Releasing an absent key does nothing.

        Args:
            key (PortKey): Local port key

        Returns:
            None
        """

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return

            entry.refcount -= 1
            if entry.refcount > 0:
                return

            del self._entries[key]
            self._close(entry)

        self.logger.info({'status': 'socket closed', 'key': str(key)})

    def add_listener(self, key: PortKey, job_id: int) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.listeners.add(job_id)

    def remove_listener(self, key: PortKey, job_id: int) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.listeners.discard(job_id)

    def lookup(self, key: PortKey) -> Optional[PoolEntry]:
        with self._lock:
            return self._entries.get(key)

    def refcount(self, key: PortKey) -> int:
        with self._lock:
            entry = self._entries.get(key)
            return entry.refcount if entry is not None else 0

    def listeners(self, key: PortKey) -> set:
        with self._lock:
            entry = self._entries.get(key)
            return set(entry.listeners) if entry is not None else set()

    def keys(self) -> list:
        with self._lock:
            return list(self._entries.keys())

    @contextmanager
    def borrow(self, key: PortKey):
        """
        Hold an entry for the duration of a with block.

        A socket bound only for this block is closed on exit.

        Args:
            key (PortKey): Local port key

        Yields:
            PoolEntry: Entry usable inside the block
        """

        entry = self.acquire(key)
        try:
            yield entry

        finally:
            self.release(key)

    def close_all(self) -> None:
        """Close every socket regardless of its reference count."""

        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            for entry in entries:
                self._close(entry)

        self.logger.info({'status': 'pool closed', 'sockets': len(entries)})

    def _close(self, entry: PoolEntry) -> None:
        entry.closed.set()
        try:
            entry.sock.close()

        except OSError as e:
            self.logger.debug({'status': 'close failed', 'key': str(entry.key), 'error': str(e)})

    def _receive(self, entry: PoolEntry) -> None:
        """
        Receive thread body, one per socket.

        Socket errors are logged and swallowed here, they only show
        up through a job's next send attempt.
        """

        while not entry.closed.is_set():
            try:
                data, addr = entry.sock.recvfrom(self.recv_buffer)

            except socket.timeout:
                continue

            except OSError as e:
                if entry.closed.is_set():
                    break

                ## e.g. ICMP port unreachable reported as a reset
                self.logger.debug({'status': 'recv error', 'key': str(entry.key), 'error': str(e)})
                entry.closed.wait(0.01)
                continue

            self._dispatch(entry, data, addr)

    def _dispatch(self, entry: PoolEntry, data: bytes, addr: tuple) -> None:
        with self._lock:
            job_ids = list(entry.listeners)

        if not job_ids:
            return

        ts = now_iso()
        payload = list(data)
        for job_id in job_ids:
            ## job deleted or stopped since it registered
            job = self.registry.get(job_id)
            if job is None or not job.enabled:
                continue

            self.notifier.publish({
                'type': 'udp_rx',
                'jobId': job.id,
                'rxPort': job.rx_port,
                'from': {'address': addr[0], 'port': addr[1]},
                'ts': ts,
                'bytes': payload,
            })
