import os
import sys
import json
import signal
import asyncio
import pathlib
import argparse
import logging
import logging.handlers

import aiohttp
from aiohttp.web import GracefulExit

from netfarm import __version__ as netfarm_version
from netfarm.conf import Config, CLIConfig
from netfarm.error import ConfigurationError
from netfarm.daemon import Daemon
from netfarm.utils import aiohttp_request

log = logging.getLogger('netfarm')
log.addHandler(logging.NullHandler())


def display(data):
    print(json.dumps(data, indent=2))


async def execute_status(conf: CLIConfig, username=None, callback=display):
    url = conf.api_connection_url
    if username:
        url = f"{url}/{username}"
    try:
        async with aiohttp_request('get', url) as resp:
            try:
                return callback(await resp.json())
            except (aiohttp.ContentTypeError, ValueError) as e:
                log.exception('Could not process response from server:', exc_info=e)
    except aiohttp.ClientConnectionError:
        print("Could not connect to daemon. Are you sure it's running?")


def get_argument_parser():
    main = argparse.ArgumentParser(
        'netfarm', description='Farms points from unused network traffic.', allow_abbrev=False,
    )
    main.add_argument(
        '-v', '--version', dest='cli_version', action="store_true",
        help='Show netfarm version and exit.'
    )
    main.set_defaults(command=None)
    sub = main.add_subparsers(metavar='COMMAND')

    start = sub.add_parser(
        'start',
        usage='netfarm start [--config FILE] [--threshold BYTES] [--ledger {memory,users,global}] ...',
        help='Start sampling network traffic and serving points.'
    )
    start.add_argument(
        '--quiet', dest='quiet', action="store_true",
        help='Disable all console output.'
    )
    start.add_argument(
        '--verbose', nargs="*",
        help=('Enable debug output. Optionally specify loggers for which debug output '
              'should selectively be applied.')
    )
    Config.contribute_to_argparse(start)
    start.set_defaults(command='start', start_parser=start)

    status = sub.add_parser('status', help='Show the points of a running daemon.')
    status.add_argument('username', nargs='?', help='User to show, for the users ledger.')
    CLIConfig.contribute_to_argparse(status)
    status.set_defaults(command='status')

    return main


def ensure_directory_exists(path: str):
    if not os.path.isdir(path):
        pathlib.Path(path).mkdir(parents=True, exist_ok=True)


def setup_logging(logger: logging.Logger, args: argparse.Namespace, conf: Config):
    default_formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s:%(lineno)d: %(message)s")
    file_handler = logging.handlers.RotatingFileHandler(
        conf.log_file_path, maxBytes=2097152, backupCount=5
    )
    file_handler.setFormatter(default_formatter)
    logger.addHandler(file_handler)
    if not args.quiet:
        handler = logging.StreamHandler()
        handler.setFormatter(default_formatter)
        logger.addHandler(handler)

    logging.getLogger('aiohttp').setLevel(logging.CRITICAL)

    if args.verbose is not None:
        if args.verbose:
            logger.setLevel(logging.INFO)
            for verbose_logger in args.verbose:
                logging.getLogger(verbose_logger).setLevel(logging.DEBUG)
        else:
            logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)


def run_daemon(args: argparse.Namespace, conf: Config):
    try:
        daemon = Daemon(conf)
    except ConfigurationError as err:
        log.error("%s", err)
        return 1

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    if args.verbose is not None:
        loop.set_debug(True)

    def __exit():
        raise GracefulExit()

    try:
        loop.add_signal_handler(signal.SIGINT, __exit)
        loop.add_signal_handler(signal.SIGTERM, __exit)
    except NotImplementedError:
        pass  # Not implemented on Windows

    try:
        loop.run_until_complete(daemon.start())
        loop.run_forever()
    except (GracefulExit, KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        loop.run_until_complete(daemon.stop())
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
    return 0


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    parser = get_argument_parser()
    args = parser.parse_args(argv)

    if args.cli_version:
        print(f"netfarm {netfarm_version}")
    elif args.command == 'start':
        try:
            conf = Config.create_from_arguments(args)
            conf.validate()
        except (ValueError, ConfigurationError) as err:
            print(f"Invalid configuration: {err}")
            return 1
        ensure_directory_exists(conf.data_dir)
        setup_logging(log, args, conf)
        return run_daemon(args, conf)
    elif args.command == 'status':
        try:
            conf = CLIConfig.create_from_arguments(args)
            conf.validate()
        except (ValueError, ConfigurationError) as err:
            print(f"Invalid configuration: {err}")
            return 1
        asyncio.run(execute_status(conf, args.username))
    else:
        parser.print_help()

    return 0


if __name__ == "__main__":
    sys.exit(main())
