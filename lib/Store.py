"""
Persistence Store Module

This module persists job definitions, packet library slots and
log records through SQLAlchemy. SQLite is used by default, MySQL
is reached through PyMySQL.

Responsibilities:
- Build the database URL from configuration
- Create the tables on first use
- Load and replace the job definition list
- Load and replace the packet slot list
- Append log records
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import os
import json
from threading import Lock
from urllib.parse import quote_plus
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, Text, select

def build_url(db: dict, workpath: str = '.') -> str:
    """
    Build a SQLAlchemy URL from the db config section.

    Args:
        db (dict): type, path, host, port, username, password, database, charset
        workpath (str): Base directory of relative sqlite paths

    Returns:
        str: Database URL
    """

    if db.get('type', 'sqlite') == 'mysql':
        return 'mysql+pymysql://%s:%s@%s:%s/%s?charset=%s' % (db['username'], quote_plus(str(db['password'])), db['host'], db['port'], db['database'], db.get('charset', 'utf8mb4'))

    path = db.get('path', 'data/udpjobs.db')
    if path == ':memory:':
        return 'sqlite://'

    if not os.path.isabs(path):
        path = os.path.join(workpath, path)

    os.makedirs(os.path.dirname(path), exist_ok = True)
    return 'sqlite:///%s' % (path)

class Store(object):
    """
    SQLAlchemy backed persistence.

    Writers are serialized by a lock, each replace runs in one
    transaction so a reader never sees a half written list.
    """

    def __init__(self, logger: object, url: str, prefix: str = 'udpjobs') -> None:
        self.logger = logger
        self.url = url
        self.engine = create_engine(url)
        self._lock = Lock()

        self.metadata = MetaData()
        self.jobs = Table(
            '%s_jobs' % (prefix), self.metadata,
            Column('id', Integer, primary_key = True, autoincrement = False),
            Column('name', String(64), nullable = False),
            Column('remote_ip', String(15), nullable = False),
            Column('remote_port', Integer, nullable = False),
            Column('tx_port', Integer, nullable = True),
            Column('rx_port', Integer, nullable = True),
            Column('interval_ms', Integer, nullable = False),
            Column('payload', Text, nullable = False),
            Column('created_at', String(32), nullable = False),
        )
        self.packets = Table(
            '%s_packets' % (prefix), self.metadata,
            Column('slot', Integer, primary_key = True, autoincrement = False),
            Column('name', String(64), nullable = False, default = ''),
            Column('note', String(256), nullable = False, default = ''),
            Column('payload', Text, nullable = False),
        )
        self.log = Table(
            '%s_log' % (prefix), self.metadata,
            Column('id', Integer, primary_key = True, autoincrement = True),
            Column('created', String(32), nullable = False),
            Column('level', String(16), nullable = False),
            Column('name', String(64), nullable = False),
            Column('func', String(64), nullable = False),
            Column('message', Text, nullable = False),
        )

    def init(self) -> None:
        """Create missing tables."""

        self.metadata.create_all(self.engine)
        self.logger.info({'status': 'store ready', 'dialect': self.engine.dialect.name})

    def dispose(self) -> None:
        self.engine.dispose()

    def load_jobs(self) -> list:
        """
        Load persisted job definitions.

        Rows with an unreadable payload come back with bytes set
        to None and are dropped by the registry.

        Returns:
            list: Job records as dicts
        """

        with self.engine.connect() as conn:
            rows = conn.execute(select(self.jobs).order_by(self.jobs.c.id)).fetchall()

        return [{
            'id': row.id,
            'name': row.name,
            'remoteIp': row.remote_ip,
            'remotePort': row.remote_port,
            'txPort': row.tx_port,
            'rxPort': row.rx_port,
            'intervalMs': row.interval_ms,
            'bytes': self._decode(row.payload),
            'createdAt': row.created_at,
        } for row in rows]

    def save_jobs(self, records: list) -> None:
        """
        Replace the persisted job list.

        Args:
            records (list): Job records from JobRegistry.to_records()

        Returns:
            None
        """

        rows = [{
            'id': r['id'],
            'name': r['name'],
            'remote_ip': r['remoteIp'],
            'remote_port': r['remotePort'],
            'tx_port': r['txPort'],
            'rx_port': r['rxPort'],
            'interval_ms': r['intervalMs'],
            'payload': json.dumps(r['bytes']),
            'created_at': r['createdAt'],
        } for r in records]

        with self._lock, self.engine.begin() as conn:
            conn.execute(self.jobs.delete())
            if rows:
                conn.execute(self.jobs.insert(), rows)

        self.logger.info({'status': 'jobs saved', 'count': len(rows)})

    def load_packets(self) -> list:
        with self.engine.connect() as conn:
            rows = conn.execute(select(self.packets).order_by(self.packets.c.slot)).fetchall()

        return [{
            'slot': row.slot,
            'name': row.name,
            'note': row.note,
            'bytes': self._decode(row.payload) or [],
        } for row in rows]

    def save_packets(self, slots: list) -> None:
        rows = [{
            'slot': s['slot'],
            'name': s['name'],
            'note': s['note'],
            'payload': json.dumps(s['bytes']),
        } for s in slots]

        with self._lock, self.engine.begin() as conn:
            conn.execute(self.packets.delete())
            if rows:
                conn.execute(self.packets.insert(), rows)

    def write_log(self, row: dict) -> None:
        with self._lock, self.engine.begin() as conn:
            conn.execute(self.log.insert(), [row])

    @staticmethod
    def _decode(text):
        try:
            return json.loads(text)

        except (TypeError, ValueError):
            return None
