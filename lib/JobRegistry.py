"""
Job Registry Module

This module keeps the set of UDP send jobs known to the service.

Responsibilities:
- Validate job definitions and assign job ids
- Look up, list and remove jobs
- Reconstruct jobs from persisted records
- Export persisted job definitions
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from threading import Lock
from typing import Optional

## import private pkgs
from Job import Job, now_iso
from Errors import NotFoundError, ValidationError
from Validate import to_int, optional_port, clamp_bytes, check_job_fields, is_valid_ipv4, is_valid_port

## display name limit
NAME_MAX = 64

class JobRegistry(object):
    """
    In-memory job table.

    The registry is shared by the lifecycle service, the send
    loops and the socket pool receive threads. Every access to
    the id map goes through the registry lock. Looking up an
    id that is gone returns None, it is not an error.
    """

    def __init__(self, logger: object) -> None:
        self.logger = logger
        self._jobs = {}
        self._next_id = 1
        self._lock = Lock()

    @property
    def next_id(self) -> int:
        return self._next_id

    def create(self, definition: dict) -> Job:
        """
        Create a stopped job from a request definition.

        Args:
            definition (dict): name, remoteIp, remotePort, txPort,
                rxPort, intervalMs and bytes

        Returns:
            Job: The new job

        Raises:
            ValidationError: When a field is invalid
        """

        remote_ip = str(definition.get('remoteIp') or '')
        remote_port = to_int(definition.get('remotePort'))
        tx_port = optional_port(definition.get('txPort'))
        rx_port = optional_port(definition.get('rxPort'))
        interval_ms = max(1, to_int(definition.get('intervalMs')))
        payload = clamp_bytes(definition.get('bytes'))
        if payload is None:
            raise ValidationError('Bytes cannot be empty.')

        check_job_fields(remote_ip, remote_port, tx_port, rx_port, payload)

        with self._lock:
            job_id = self._next_id
            self._next_id += 1
            name = str(definition.get('name') or '')[:NAME_MAX] or 'Job %d' % (job_id)
            job = Job(job_id, name, remote_ip, remote_port, tx_port, rx_port, interval_ms, payload)
            self._jobs[job_id] = job

        self.logger.info({'job': job_id, 'status': 'created'})
        return job

    def get(self, job_id: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def require(self, job_id) -> Job:
        job = self.get(to_int(job_id))
        if job is None:
            raise NotFoundError('Job not found.')

        return job

    def remove(self, job_id: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def all(self) -> list:
        with self._lock:
            return list(self._jobs.values())

    def load(self, records: list) -> int:
        """
        Reconstruct jobs from persisted records.

        Invalid records are dropped, valid ones always come back
        stopped. The id counter continues after the highest id.

        Args:
            records (list): Persisted job definitions

        Returns:
            int: Number of jobs reconstructed
        """

        self.logger.info({'status': 'start'})
        jobs = {}
        for record in records or []:
            job = self._from_record(record)
            if job is None:
                self.logger.warning({'status': 'dropped invalid job record', 'record': record})
                continue

            jobs[job.id] = job

        with self._lock:
            self._jobs = jobs
            self._next_id = max(jobs.keys(), default = 0) + 1

        self.logger.info({'loaded': len(jobs), 'next_id': self._next_id})
        self.logger.info({'status': 'end'})
        return len(jobs)

    @staticmethod
    def _from_record(record) -> Optional[Job]:
        if not isinstance(record, dict):
            return None

        job_id = to_int(record.get('id'))
        remote_ip = str(record.get('remoteIp') or '')
        remote_port = to_int(record.get('remotePort'))
        tx_port = optional_port(record.get('txPort'))
        rx_port = optional_port(record.get('rxPort'))
        interval_ms = max(1, to_int(record.get('intervalMs')))
        payload = clamp_bytes(record.get('bytes'))
        created_at = str(record.get('createdAt') or now_iso())

        if job_id <= 0:
            return None

        if not is_valid_ipv4(remote_ip) or not is_valid_port(remote_port):
            return None

        if tx_port is not None and not is_valid_port(tx_port):
            return None

        if rx_port is not None and not is_valid_port(rx_port):
            return None

        if not payload:
            return None

        name = str(record.get('name') or '')[:NAME_MAX] or 'Job %d' % (job_id)
        return Job(job_id, name, remote_ip, remote_port, tx_port, rx_port, interval_ms, payload, created_at = created_at)

    def to_records(self) -> list:
        return [job.to_record() for job in sorted(self.all(), key = lambda j: j.id)]
