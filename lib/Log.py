"""
Logging Module

This module builds the application logger used by every
component. Records go to the console, to a rotating log file
and optionally to the database log table.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

## record format, messages are usually dicts
LOG_FORMAT = '%(asctime)s %(levelname)s [%(process)d] %(name)s.%(funcName)s: %(message)s'

class StoreLogHandler(logging.Handler):
    """
    Log handler writing records into the store log table.
    """

    def __init__(self, store: object) -> None:
        super().__init__()
        self.store = store

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.store.write_log({
                'created': datetime.fromtimestamp(record.created).isoformat(timespec = 'milliseconds'),
                'level': record.levelname,
                'name': record.name[:64],
                'func': record.funcName[:64],
                'message': record.getMessage(),
            })

        except Exception:
            ## never let logging break the caller
            self.handleError(record)

class APSchedulerForwardHandler(logging.Handler):
    """
    Logging bridge handler for APScheduler.

    Forwards APScheduler log records to the application logger,
    preserving log level semantics.
    """

    def __init__(self, my_logger: logging.Logger) -> None:
        super().__init__()
        self.my_logger = my_logger

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if record.levelno >= logging.ERROR:
                self.my_logger.error({'apscheduler': msg})

            elif record.levelno >= logging.WARNING:
                self.my_logger.warning({'apscheduler': msg})

            else:
                self.my_logger.debug({'apscheduler': msg})

        except Exception:
            self.handleError(record)

class Log(object):
    """
    Application logger factory.

    Attributes:
        logger (logging.Logger): Configured logger
    """

    def __init__(self, config: dict) -> None:
        """
        Build the logger from configuration.

        Args:
            config (dict): Configuration with 'name', 'workpath' and a 'log' section

        Returns:
            None
        """

        self.config = config
        log_conf = config.get('log', {})
        self.logger = logging.getLogger(config.get('name', 'UdpJobs'))
        self.logger.setLevel(getattr(logging, str(log_conf.get('level', 'INFO')).upper(), logging.INFO))
        self.logger.propagate = False
        self.formatter = logging.Formatter(LOG_FORMAT)

        ## handlers are attached once per logger name
        if self.logger.handlers:
            return

        if log_conf.get('console', True):
            console = logging.StreamHandler()
            console.setFormatter(self.formatter)
            self.logger.addHandler(console)

        if log_conf.get('path'):
            path = log_conf['path']
            if not os.path.isabs(path):
                path = os.path.join(config.get('workpath', '.'), path)

            os.makedirs(path, exist_ok = True)
            filename = os.path.join(path, '%s.log' % (self.logger.name))
            file_handler = RotatingFileHandler(filename, maxBytes = log_conf.get('max_bytes', 10485760), backupCount = log_conf.get('backup_count', 5), encoding = 'utf-8')
            file_handler.setFormatter(self.formatter)
            self.logger.addHandler(file_handler)

    def add_db_handler(self, store: object, level: int = logging.INFO) -> None:
        """
        Also write records into the store log table.

        Args:
            store (Store): Initialized store
            level (int): Minimum level written to the database

        Returns:
            None
        """

        handler = StoreLogHandler(store)
        handler.setLevel(level)
        self.logger.addHandler(handler)

    def forward_apscheduler(self) -> None:
        """Redirect APScheduler internal logs into the application logger."""

        aps_logger = logging.getLogger('apscheduler')
        aps_logger.setLevel(logging.INFO)
        handler = APSchedulerForwardHandler(self.logger)
        handler.setFormatter(logging.Formatter('%(levelname)s %(name)s %(message)s'))

        ## disable propagation to avoid duplicate logs
        aps_logger.addHandler(handler)
        aps_logger.propagate = False
