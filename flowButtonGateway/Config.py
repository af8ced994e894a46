# -*- coding: utf-8 -*-
import io
import logging
import socket
import time
from collections import namedtuple

import libconf

from flowButtonGateway.Errors import ConfigError

CONFIG_FILE = '/etc/lwm2m/flow_access.cfg'
ROOT_CA_FILE = '/etc/lwm2m/root-CA.crt'
FILE_READ_TRIALS = 5

logger = logging.getLogger(__name__)

RetryPolicy = namedtuple('RetryPolicy', ['attempts', 'delay'])
RetryPolicy.__doc__ = ''' How often and how far apart to retry.  attempts=None retries forever '''

RegistrationConfig = namedtuple('RegistrationConfig', ['url', 'key', 'secret', 'rememberMeToken', 'deviceName', 'rootCAPath'])

REQUIRED_KEYS = (('url', 'URL'), ('key', 'CustomerKey'), ('secret', 'CustomerSecret'), ('rememberMeToken', 'RememberMeToken'))
OPTIONAL_KEYS = (('deviceName', 'DeviceName'), ('rootCAPath', 'RootCAPath'))

def attempts(policy):
    ''' Yield attempt numbers (1 based) for a retry policy '''
    count = 0
    while policy.attempts is None or count < policy.attempts:
        count += 1
        yield count

def parseConfig(cfg):
    ''' Convert a parsed libconfig document into RegistrationConfig

        Raises:
            ConfigError: if a required key is missing or does not hold a string

    '''
    values = {}
    for field, key in REQUIRED_KEYS:
        value = cfg.get(key)
        if not isinstance(value, str):
            raise ConfigError('{0} missing from configuration'.format(key))
        values[field] = value

    defaults = { 'deviceName': socket.gethostname(), 'rootCAPath': ROOT_CA_FILE }
    for field, key in OPTIONAL_KEYS:
        value = cfg.get(key)
        values[field] = value if isinstance(value, str) else defaults[field]
    return RegistrationConfig(**values)

def loadRegistrationConfig(path=CONFIG_FILE, policy=RetryPolicy(FILE_READ_TRIALS, 1), sleep=time.sleep):
    ''' Read the registration data that the provisioning tool stores for the gateway.

    The provisioning tool may still be writing the file when the gateway starts, so a missing or unreadable file is retried.  A file that reads correctly but lacks registration data is not.

    Returns:
        A `RegistrationConfig`, or None if the data is not available

    '''
    for attempt in attempts(policy):
        try:
            with io.open(path, 'r', encoding='utf-8') as f:
                cfg = libconf.load(f)
        except (OSError, UnicodeDecodeError, libconf.ConfigParseError) as e:
            logger.info('Waiting for config data')
            logger.debug('Attempt {0} to read {1} failed: {2}'.format(attempt, path, e))
            sleep(policy.delay)
            continue

        try:
            return parseConfig(cfg)
        except ConfigError as e:
            logger.error('Failed to read config data: {0}'.format(e))
            return None

    logger.error('Failed to read config file')
    return None
