"""
UDP Jobs Service Entry Point

This module provides the main entry point for initializing and running
the UDP jobs service. It is responsible for:

- Loading configuration
- Initializing logging
- Opening the persistence store
- Attaching database-backed logging
- Starting the UdpJobsService runtime or performing a one-shot send
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import build in pkgs
import re
import os
import sys
import json
import argparse

## Resolve project root directory
workpath = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

## Extend Python module search path for project libraries
sys.path.append("%s/lib" % (workpath))

## import private pkgs
from Log import Log
from Store import Store, build_url
from Config import Config
from Notifier import LogSubscriber
from ByteCodec import parse_bytes
from Errors import UdpJobsError
from Validate import optional_port
from UdpJobsService import UdpJobsService

class UdpJobs(object):
    """
    Core UDP jobs controller.

    This class bootstraps the subsystems needed by the service:
    configuration, logging and the persistence store.

    Lifecycle:
        1. Load configuration
        2. Initialize logging
        3. Open the store
        4. Attach database-backed logging
        5. Run the requested command
    """

    def __init__(self) -> None:
        ## set private values
        self.config = Config(workpath).config
        self.config['pid'] = os.getpid()
        self.config['pname'] = os.path.basename(__file__)
        self.config['name'] = re.sub(r'\..*$', '', self.config['pname'])

        ## logger init
        self.loggerObj = Log(self.config)
        self.logger = self.loggerObj.logger
        self.loggerObj.forward_apscheduler()

        ## debug prt
        self.logger.debug({'db.type': self.config['db']['type']})
        self.logger.debug({'db.path': self.config['db']['path']})
        self.logger.debug({'db.host': self.config['db']['host']})
        self.logger.debug({'db.database': self.config['db']['database']})

        ## init StoreObj
        self.StoreObj = Store(self.logger, build_url(self.config['db'], workpath))
        self.StoreObj.init()

        ## prt log to db
        if self.config['log'].get('db'):
            self.loggerObj.add_db_handler(self.StoreObj)

    def __destory__(self) -> None:
        """
        Release allocated resources.

        Intended to be called during service shutdown.
        """

        self.logger.debug({'status': 'start'})
        self.StoreObj.dispose()
        self.logger.debug({'status': 'end'})

    def service(self) -> UdpJobsService:
        conf = self.config['udpjobs']
        svcObj = UdpJobsService(self.logger,
                                self.StoreObj,
                                conf['bind_host'],
                                conf['max_workers'],
                                conf['guard_ms'],
                                conf['sleep_cap_ms'],
                                conf['resync_ms'],
                                conf['recv_timeout'],
                                conf['recv_buffer'],
                                )
        svcObj.notifier.subscribe(LogSubscriber(self.logger))
        svcObj.load()
        return svcObj

    def run(self) -> bool:
        """
        Run the service in blocking mode.

        Returns:
            bool: True once the service stopped
        """

        self.logger.debug({'status': 'start'})
        svcObj = self.service()
        svcObj.serve_forever()
        self.__destory__()
        self.logger.debug({'status': 'end'})
        return True

    def send(self, ip: str, port: int, tx_port, text: str, mode: str) -> bool:
        """
        Send one datagram and exit.

        Returns:
            bool: True when the datagram was sent
        """

        svcObj = self.service()
        try:
            sent = svcObj.send_once(ip, port, optional_port(tx_port), parse_bytes(text, mode))
            print('sent %d bytes to %s:%d' % (sent, ip, port))
            return True

        except UdpJobsError as e:
            print('error: %s' % (e), file = sys.stderr)
            return False

        finally:
            svcObj.stop()
            self.__destory__()

    def jobs(self) -> bool:
        svcObj = self.service()
        print(json.dumps(svcObj.state()['jobs'], indent = 2))
        self.__destory__()
        return True

def main() -> None:
    """
    Application entry point.

    Parses the command line and dispatches to the UdpJobs command.
    """

    ap = argparse.ArgumentParser(description = 'Repeating UDP send jobs')
    sub = ap.add_subparsers(dest = 'command')
    sub.add_parser('serve', help = 'run the service until SIGINT / SIGTERM')
    sub.add_parser('jobs', help = 'list stored jobs')
    send = sub.add_parser('send', help = 'send one datagram')
    send.add_argument('--ip', required = True)
    send.add_argument('--port', type = int, required = True)
    send.add_argument('--tx-port', type = int, default = None)
    send.add_argument('--bytes', required = True, help = 'payload text, e.g. "01 02 ff"')
    send.add_argument('--mode', choices = ['hex', 'dec'], default = 'hex')
    args = ap.parse_args()

    udpJobsObj = UdpJobs()
    if args.command == 'send':
        ok = udpJobsObj.send(args.ip, args.port, args.tx_port, args.bytes, args.mode)

    elif args.command == 'jobs':
        ok = udpJobsObj.jobs()

    else:
        ok = udpJobsObj.run()

    sys.exit(0 if ok else 1)

if __name__ == "__main__":
    """
    Command-line entry point.

    This function is executed only when the module is run as a
    script. It will not be executed when the module is imported.
    """

    main()
