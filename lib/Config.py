"""
Configuration Module

This module loads the service configuration from
<workpath>/etc/config.json and fills in defaults for any
missing section or key.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import os
import json
import copy

DEFAULTS = {
    'log': {
        'level': 'INFO',
        'path': 'log',
        'max_bytes': 10485760,
        'backup_count': 5,
        'console': True,
        'db': False,
    },
    'db': {
        'type': 'sqlite',
        'path': 'data/udpjobs.db',
        'host': '127.0.0.1',
        'port': 3306,
        'username': 'udpjobs',
        'password': '',
        'database': 'udpjobs',
        'charset': 'utf8mb4',
    },
    'udpjobs': {
        'bind_host': '0.0.0.0',
        'max_workers': 64,
        'guard_ms': 2,
        'sleep_cap_ms': 50,
        'resync_ms': 5000,
        'recv_timeout': 0.2,
        'recv_buffer': 65535,
    },
}

class Config(object):
    """
    Service configuration loader.

    Attributes:
        config (dict): Merged configuration
    """

    def __init__(self, workpath: str, filename: str = 'etc/config.json') -> None:
        self.workpath = workpath
        self.filename = os.path.join(workpath, filename)
        self.config = self.load()

    def load(self) -> dict:
        """
        Read the config file and merge it over the defaults.

        A missing file yields the defaults, malformed JSON raises.

        Returns:
            dict: Configuration
        """

        config = copy.deepcopy(DEFAULTS)
        config['workpath'] = self.workpath
        if not os.path.exists(self.filename):
            return config

        with open(self.filename, 'r', encoding = 'utf-8') as f:
            loaded = json.load(f)

        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(config.get(section), dict):
                config[section].update(values)

            else:
                config[section] = values

        return config
