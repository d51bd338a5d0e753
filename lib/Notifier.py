"""
Notification Hub Module

This module fans service events out to any number of observers.

Events are plain dicts with a 'type' key:
- job_update: public job snapshot
- job_delete_ok: id of a deleted job
- udp_rx: datagram received on a job rx port
- packets_update: packet library snapshot
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
from threading import Lock
from typing import Callable

class Notifier(object):
    """
    In-process publish / subscribe hub.

    Subscribers are called synchronously from the publishing
    thread, in subscription order. A failing subscriber is
    logged and skipped, it never interrupts the publisher.
    """

    def __init__(self, logger: object) -> None:
        self.logger = logger
        self._subscribers = []
        self._lock = Lock()

    def subscribe(self, callback: Callable[[dict], None]) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[dict], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: dict) -> None:
        """
        Deliver an event to every subscriber.

        Args:
            event (dict): Event payload

        Returns:
            None
        """

        ## iterate over a copy so callbacks may (un)subscribe
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)

            except Exception as e:
                self.logger.error({'status': 'subscriber failed', 'type': event.get('type'), 'error': str(e)})

    def job_update(self, job) -> None:
        self.publish({'type': 'job_update', 'job': job.public()})

    def job_deleted(self, job_id: int) -> None:
        self.publish({'type': 'job_delete_ok', 'id': job_id})

class LogSubscriber(object):
    """Writes every event into the application log."""

    def __init__(self, logger: object) -> None:
        self.logger = logger

    def __call__(self, event: dict) -> None:
        if event.get('type') == 'udp_rx':
            self.logger.info({'udp_rx': event['jobId'], 'from': event['from'], 'len': len(event['bytes'])})

        else:
            self.logger.debug({'event': event})
