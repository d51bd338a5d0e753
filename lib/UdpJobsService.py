"""
UDP Jobs Service

This module implements the runtime service that starts, stops and
supervises repeating UDP send jobs. Each running job has its own
send loop, executed on an APScheduler thread pool executor, and
holds references on the shared sockets it sends from and listens on.

Responsibilities:
- Create, start, stop and delete jobs
- Acquire and release pooled sockets with rollback on failure
- Supervise send loops and stop jobs whose loop faults
- Perform one-shot manual sends
- Answer control requests
- Persist job definitions and manage graceful shutdown
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import build in pkgs
import time
import signal
from threading import RLock
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor

## import private pkgs
from Job import now_iso
from PortKey import PortKey
from Notifier import Notifier
from Scheduler import JobLoop
from SocketPool import SocketPool
from JobRegistry import JobRegistry
from PacketLibrary import PacketLibrary
from Errors import UdpJobsError, ValidationError, StartError
from Validate import to_int, optional_port, clamp_bytes, check_destination, check_job_fields

## reason of an operator requested stop, leaves last_err empty
STOPPED = 'stopped'

class UdpJobsService(object):
    """
    Core UDP jobs service controller.

    Start and stop of jobs are serialized by the service lock,
    socket reference counts and listener sets are additionally
    guarded by the pool lock.
    """

    def __init__(self, logger: object, store: object = None, bind_host: str = '0.0.0.0', max_workers: int = 64, guard_ms: float = 2, sleep_cap_ms: float = 50, resync_ms: float = 5000, recv_timeout: float = 0.2, recv_buffer: int = 65535) -> None:
        """
        Initialize the service.

        Args:
            logger (object): Application logger
            store (Store): Persistence store, None disables persistence
            bind_host (str): Local address sockets bind to
            max_workers (int): Executor threads, one per running job
            guard_ms (float): Send loop yield threshold
            sleep_cap_ms (float): Send loop longest single wait
            resync_ms (float): Send loop schedule reset threshold
            recv_timeout (float): Socket receive poll timeout in seconds
            recv_buffer (int): Maximum datagram size read

        Returns:
            None
        """

        self.logger = logger
        self.logger.info({'status': 'start'})
        self.store = store

        ## send loop tuning
        self.max_workers = max_workers
        self.guard_ms = guard_ms
        self.sleep_cap_ms = sleep_cap_ms
        self.resync_ms = resync_ms

        ## components
        self.notifier = Notifier(self.logger)
        self.registry = JobRegistry(self.logger)
        self.pool = SocketPool(self.logger, self.registry, self.notifier, bind_host, recv_timeout, recv_buffer)
        self.packets = PacketLibrary(self.logger, self.store, self.notifier) if self.store is not None else None

        ## internal runtime state
        self._scheduler = None
        self._running = False
        self._lock = RLock()

        self.init()
        self.logger.info({'status': 'end'})

    def init(self) -> None:
        """
        Create the APScheduler instance running the send loops.

        Loops are submitted as run-now jobs, the memory job store
        is used because loops hold live objects.

        Returns:
            None
        """

        self._scheduler = BackgroundScheduler(
            executors = {
                ## one worker per running job loop
                'default': ThreadPoolExecutor(max_workers = self.max_workers),
            },
            job_defaults = {
                'coalesce': False,
                'max_instances': 1,

                ## a loop submitted late still has to run
                'misfire_grace_time': None,
            },
        )

    def load(self) -> None:
        """
        Reconstruct jobs and packet slots from the store.

        Jobs always come back stopped.

        Returns:
            None
        """

        self.logger.info({'status': 'start'})
        if self.store is not None:
            self.registry.load(self.store.load_jobs())
            self.packets.load()

        self.logger.info({'status': 'end'})

    def start(self) -> None:
        """Start the executor, jobs can be started afterwards."""

        self.logger.info({'status': 'start'})
        self._scheduler.start()
        self._running = True
        self.logger.info({'status': 'end'})

    def stop(self, reason: str = 'shutdown') -> None:
        """
        Stop every job and shut the service down.

        Args:
            reason (str): Recorded as last_err of running jobs

        Returns:
            None
        """

        self.logger.info({'status': 'start', 'reason': reason})
        try:
            for job in self.registry.all():
                if job.enabled:
                    self.stop_job(job, reason)

            self.persist()

            ## loops observe their stop flag within one wait
            if self._scheduler.running:
                self._scheduler.shutdown(wait = True)

        finally:
            self._running = False
            self.pool.close_all()

        self.logger.info({'status': 'end'})

    @property
    def running(self) -> bool:
        return self._running

    def persist(self) -> None:
        if self.store is not None:
            self.store.save_jobs(self.registry.to_records())

    def create_job(self, definition: dict):
        """
        Create a stopped job and persist the job list.

        Args:
            definition (dict): Job definition fields

        Returns:
            Job: The new job
        """

        job = self.registry.create(definition)
        self.persist()
        self.notifier.job_update(job)
        return job

    def delete_job(self, job_id) -> None:
        job = self.registry.require(job_id)
        self.stop_job(job, 'deleted')
        self.registry.remove(job.id)
        self.persist()
        self.logger.info({'job': job.id, 'status': 'deleted'})
        self.notifier.job_deleted(job.id)

    def start_job(self, job) -> None:
        """
        Start a job.

        Starting an enabled job does nothing. Sockets acquired by a
        failed attempt are released again before the error is raised.

        Args:
            job (Job): Job to start

        Raises:
            ValidationError: When the job definition cannot be sent
            StartError: When the service is down, no worker is free,
                or a socket could not be acquired

        Returns:
            None
        """

        with self._lock:
            if job.enabled:
                return

            check_job_fields(job.remote_ip, job.remote_port, job.tx_port, job.rx_port, job.payload)

            if not self._running:
                raise StartError('service is not running')

            if self.active_count() >= self.max_workers:
                raise StartError('no free worker for job loop (max_workers=%d)' % (self.max_workers))

            job.arm()
            job.enabled = True
            job.stats.last_err = ''
            job.stats.start_iso = now_iso()
            job.rate_window.clear()

            tx_key, rx_key = job.tx_key, job.rx_key
            acquired = []
            listening = False
            try:
                self.pool.acquire(tx_key)
                acquired.append(tx_key)

                if rx_key is not None:
                    self.pool.acquire(rx_key)
                    acquired.append(rx_key)
                    self.pool.add_listener(rx_key, job.id)
                    listening = True

                loop = JobLoop(self.logger, job, self.pool, self.notifier, self.guard_ms, self.sleep_cap_ms, self.resync_ms)
                self.logger.info({'job': job.id, 'status': 'started', 'name': job.name, 'tx': str(tx_key), 'rx': str(rx_key) if rx_key is not None else 'none', 'dest': '%s:%d' % (job.remote_ip, job.remote_port)})
                self.notifier.job_update(job)

                self._scheduler.add_job(
                    func = self._run_loop,
                    trigger = 'date',
                    args = [job, loop],
                    name = 'udpjob-%d' % (job.id),
                )

            except Exception as e:
                ## rollback everything this attempt acquired
                job.enabled = False
                job.request_stop()
                job.stats.last_err = 'start failed: %s' % (e)

                if listening:
                    self.pool.remove_listener(rx_key, job.id)

                for key in reversed(acquired):
                    self.pool.release(key)

                self.logger.error({'job': job.id, 'status': 'start failed', 'error': str(e)})
                self.notifier.job_update(job)
                raise StartError(job.stats.last_err) from e

    def stop_job(self, job, reason: str = STOPPED) -> None:
        """
        Stop a job and release its sockets.

        Stopping a stopped job only records the reason, references
        are never released twice.

        Args:
            job (Job): Job to stop
            reason (str): STOPPED for an operator stop, otherwise
                the text recorded as last_err

        Returns:
            None
        """

        last_err = '' if reason == STOPPED else str(reason)
        with self._lock:
            if not job.enabled:
                job.stats.last_err = last_err
                self.notifier.job_update(job)
                return

            job.enabled = False
            job.request_stop()

            rx_key = job.rx_key
            if rx_key is not None:
                self.pool.remove_listener(rx_key, job.id)
                self.pool.release(rx_key)

            self.pool.release(job.tx_key)
            job.stats.last_err = last_err

        self.logger.info({'job': job.id, 'status': 'stopped', 'reason': reason})
        self.notifier.job_update(job)

    def active_count(self) -> int:
        return sum(1 for job in self.registry.all() if job.enabled)

    def _run_loop(self, job, loop: JobLoop) -> None:
        """
        Executor entry point of a send loop.

        Any fault escaping the loop stops the job with the fault as
        reason, provided the loop still belongs to the current run.
        """

        try:
            loop.run()

        except Exception as e:
            self.logger.exception({'job': job.id, 'status': 'loop error', 'error': str(e)})
            with self._lock:
                if job.enabled and job.stop_event is loop.stop_event:
                    self.stop_job(job, 'loop error: %s' % (e))

    def send_once(self, remote_ip: str, remote_port: int, tx_port, payload) -> int:
        """
        Send a single datagram outside of any job.

        The tx socket is only held for the duration of the send.

        Args:
            remote_ip (str): Destination IPv4 address
            remote_port (int): Destination port
            tx_port (int): Local port, None for the ephemeral socket
            payload (list): Bytes 0..255

        Returns:
            int: Number of bytes sent

        Raises:
            ValidationError: On an invalid destination or payload
            BindError: When the tx socket cannot be bound
            TransmitError: When sendto fails
        """

        check_destination(remote_ip, remote_port, tx_port)
        values = clamp_bytes(payload)
        if values is None:
            raise ValidationError('Invalid bytes.')

        with self.pool.borrow(PortKey.from_port(tx_port)) as entry:
            sent = entry.send(values, remote_ip, remote_port)

        self.logger.info({'status': 'manual send', 'dest': '%s:%d' % (remote_ip, remote_port), 'len': sent})
        return sent

    def state(self) -> dict:
        return {
            'type': 'state',
            'packets': self.packets.snapshot() if self.packets else {'slots': []},
            'jobs': [job.public() for job in sorted(self.registry.all(), key = lambda j: j.id)],
        }

    def handle(self, message: dict):
        """
        Answer one control request.

        Job and packet changes are reported through the notifier,
        the return value only carries direct replies and errors.

        Args:
            message (dict): Request with a 'type' key

        Returns:
            dict: Reply message, None when the change was published
        """

        msg_type = message.get('type') if isinstance(message, dict) else None
        try:
            if msg_type == 'state':
                return self.state()

            if msg_type == 'packets_save_slot':
                self._require_packets().save_slot(message.get('slot'), message.get('name'), message.get('note'), message.get('bytes'))
                return None

            if msg_type == 'packets_delete_slot':
                self._require_packets().delete_slot(message.get('slot'))
                return None

            if msg_type == 'manual_send':
                self.send_once(str(message.get('remoteIp') or ''), to_int(message.get('remotePort')), optional_port(message.get('txPort')), message.get('bytes'))
                return {'type': 'manual_send_ok'}

            if msg_type == 'job_create':
                self.create_job(message)
                return None

            if msg_type == 'job_start':
                self.start_job(self.registry.require(message.get('id')))
                return None

            if msg_type == 'job_stop':
                self.stop_job(self.registry.require(message.get('id')), STOPPED)
                return None

            if msg_type == 'job_delete':
                self.delete_job(message.get('id'))
                return None

            return {'type': 'error', 'message': 'Unknown message type.'}

        except UdpJobsError as e:
            self.logger.info({'request': msg_type, 'rejected': str(e)})
            return {'type': 'error', 'message': str(e)}

        except Exception as e:
            self.logger.exception({'request': msg_type, 'error': str(e)})
            return {'type': 'error', 'message': str(e)}

    def _require_packets(self) -> PacketLibrary:
        if self.packets is None:
            raise ValidationError('Packet library is not available.')

        return self.packets

    def serve_forever(self) -> None:
        """
        Run the service until SIGINT or SIGTERM.

        Returns:
            None
        """

        self.logger.info({'status': 'start'})
        self.start()

        ## register signal handlers for graceful shutdown
        signal.signal(signal.SIGTERM, self._handle_exit)
        signal.signal(signal.SIGINT, self._handle_exit)

        while self._running:
            time.sleep(0.5)

        self.logger.info({'status': 'end'})

    def _handle_exit(self, signum, frame) -> None:
        self.logger.info({'status': 'Received signal %s, exiting...' % (signum)})
        if self._running:
            self.stop('shutdown:%s' % (signal.Signals(signum).name))
