# -*- coding: utf-8 -*-
import argparse
import logging
import sys

from flowButtonGateway.Gateway import Gateway, GatewayContext

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# fatal(1), error(2), warning(3), info(4), debug(5)
DEBUG_LEVELS = {
    1: logging.CRITICAL,
    2: logging.ERROR,
    3: logging.WARNING,
    4: logging.INFO,
    5: logging.DEBUG,
}
DEFAULT_DEBUG_LEVEL = 4

USAGE = '''Usage: {0} [options]

 -l : Log filename.
 -v : Debug level from 1 to 5
      fatal(1), error(2), warning(3), info(4), debug(5) and max(>5)
      default is info.
 -h : Print help and exit.
'''

logger = logging.getLogger('flowButtonGateway')


class UsageError(Exception):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def printUsage(program):
    print(USAGE.format(program))

def parseCommandArgs(argv):
    ''' Parse the command line.

    Returns:
        A tuple (status, logFile, level).  status is -1 for bad arguments, 0 when help was printed and 1 to run.

    '''
    program = argv[0] if argv else 'flow_button_gateway_appd'
    parser = _ArgumentParser(prog=program, add_help=False)
    parser.add_argument('-l', dest='logFile')
    parser.add_argument('-v', dest='level')
    parser.add_argument('-h', dest='help', action='store_true')

    try:
        args = parser.parse_args(argv[1:])
    except UsageError:
        printUsage(program)
        return -1, None, None

    if args.help:
        printUsage(program)
        return 0, None, None

    level = DEFAULT_DEBUG_LEVEL
    if args.level is not None:
        try:
            level = int(args.level, 0)
        except ValueError:
            level = None
        if level not in DEBUG_LEVELS:
            logging.basicConfig(format=LOG_FORMAT)
            logger.error('Invalid debug level')
            printUsage(program)
            return -1, None, None

    return 1, args.logFile, DEBUG_LEVELS[level]

def configureLogging(logFile, level):
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    handler = None
    if logFile:
        try:
            handler = logging.FileHandler(logFile, mode='w')
        except OSError:
            handler = None
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    if logFile and not isinstance(handler, logging.FileHandler):
        logger.error('Failed to create or open {0} file'.format(logFile))

def main(argv=None, context=None):
    argv = sys.argv if argv is None else argv
    status, logFile, level = parseCommandArgs(argv)
    if status <= 0:
        return status

    configureLogging(logFile, level)
    return Gateway(context if context is not None else GatewayContext()).run()

def run():
    sys.exit(main())

if __name__ == '__main__':
    run()
