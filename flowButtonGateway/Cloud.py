# -*- coding: utf-8 -*-
import io
import json
import logging
import os
import threading
import time
from urllib.parse import urlparse

from AWSIoTPythonSDK.MQTTLib import AWSIoTMQTTShadowClient
from AWSIoTPythonSDK.exception.operationError import operationError
from AWSIoTPythonSDK.exception.operationTimeoutException import operationTimeoutException

from flowButtonGateway.Config import RetryPolicy, attempts, loadRegistrationConfig

MESSAGE_EXPIRY_TIMEOUT = 20 # seconds
FLOW_SERVER_CONNECT_TRIALS = 5
NVS_FILE = '/var/lib/flow_button_gateway/nvs.json'
REMEMBER_ME_TOKEN_KEY = 'core.deviceremembermetoken'
MESSAGE_TOPIC = 'flow/users/{0}/messages'
MQTT_OPERATION_TIMEOUT = 5 # seconds
WEBSOCKET_PORT = 443

SDK_ERRORS = (operationError, operationTimeoutException, OSError, ValueError)

def _section(document, key):
    ''' Return document[key] when both are JSON objects, otherwise an empty dict '''
    value = document.get(key) if isinstance(document, dict) else None
    return value if isinstance(value, dict) else {}


class FlowNVS(object):
    ''' Small persistent key-value store kept next to the cloud client.  Values survive restarts of the gateway '''
    _logger = logging.getLogger(__name__)

    def __init__(self, path=NVS_FILE):
        self._path = path
        self._values = {}
        if os.path.exists(path):
            with io.open(path, 'r', encoding='utf-8') as f:
                self._values = json.load(f)

    def get(self, key, default=None):
        return self._values.get(key, default)

    def set(self, key, value):
        self._values[key] = value
        directory = os.path.dirname(self._path)
        if directory and not os.path.isdir(directory):
            os.makedirs(directory)
        with io.open(self._path, 'w', encoding='utf-8') as f:
            json.dump(self._values, f)


class FlowClient(object):
    ''' Registers the gateway with the cloud as a device and sends text messages to the user that owns it.

        The cloud side is AWS IoT-Core, reached over MQTT on a websocket with IAM credentials.  The registration data maps onto it as:

        * URL: the IOT-Core endpoint
        * CustomerKey / CustomerSecret: the access key id and secret access key
        * RememberMeToken: the session token, kept in the non-volatile store between runs

        Args:
            config (:obj:`RegistrationConfig`): Registration data
            nvsPath (`str`, optional): Path of the non-volatile store
            clientFactory (callable, optional): Creates the shadow client.  Default is `AWSIoTMQTTShadowClient`

    '''
    _logger = logging.getLogger(__name__)

    def __init__(self, config, nvsPath=NVS_FILE, clientFactory=AWSIoTMQTTShadowClient):
        self._config = config
        self._nvsPath = nvsPath
        self._clientFactory = clientFactory
        self._nvs = None
        self._client = None
        self._shadowHandler = None
        self._loggedIn = False
        # Connection state reported by the MQTT client, None until it has reported
        self._online = None

    def _onOnline(self):
        self._logger.info('Connection to server is online')
        self._online = True

    def _onOffline(self):
        self._logger.warning('Connection to server is offline')
        self._online = False

    def _initialiseCore(self):
        try:
            self._nvs = FlowNVS(self._nvsPath)
        except (OSError, ValueError) as e:
            self._logger.error('Unable to open non-volatile store {0}: {1}'.format(self._nvsPath, e))
            return False
        return True

    def _shutdownCore(self):
        self._nvs = None

    def _initialiseMessaging(self, token):
        ''' Create the shadow client and connect to IOT-Core with a persistent session '''
        endpoint = urlparse(self._config.url) if '://' in self._config.url else None
        host = endpoint.hostname if endpoint else self._config.url
        port = (endpoint.port if endpoint else None) or WEBSOCKET_PORT

        client = self._clientFactory(self._config.deviceName, useWebsocket=True, cleanSession=False)
        client.configureEndpoint(host, port)
        client.configureCredentials(self._config.rootCAPath)
        client.configureIAMCredentials(self._config.key, self._config.secret, token)

        client.configureAutoReconnectBackoffTime(1, 32, 20)
        client.configureConnectDisconnectTimeout(10)
        client.configureMQTTOperationTimeout(MQTT_OPERATION_TIMEOUT)

        client.onOnline = self._onOnline
        client.onOffline = self._onOffline

        self._client = client
        self._online = None
        if not client.connect():
            self._logger.error('Failed to connect to server')
            return False
        if self._online is None:
            self._online = True

        self._shadowHandler = client.createShadowHandlerWithName(self._config.deviceName, True)
        self._loggedIn = True
        return True

    def register(self):
        ''' Initialise the cloud client and log in as a device

        Returns:
            True if the device is logged in

        '''
        if not self._initialiseCore():
            self._logger.error('Flow Core initialization failed')
            return False
        try:
            self._nvs.set(REMEMBER_ME_TOKEN_KEY, self._config.rememberMeToken)
        except OSError as e:
            self._logger.error('Unable to store remember me token: {0}'.format(e))
            self._shutdownCore()
            return False
        self._shutdownCore()

        # The token is only picked up by a fresh initialisation
        if not self._initialiseCore():
            self._logger.error('Flow Core re-initialization failed')
            return False
        token = self._nvs.get(REMEMBER_ME_TOKEN_KEY, '')

        try:
            if not self._initialiseMessaging(token):
                self.shutdown()
                return False
        except SDK_ERRORS as e:
            self._logger.error('Flow Messaging initialization failed: {0}'.format(e))
            self.shutdown()
            return False

        if not self.isDeviceLoggedIn():
            self._logger.error('Failed to login as device')
            self.shutdown()
            return False

        self._logger.info('Device registration successful')
        return True

    def isDeviceLoggedIn(self):
        ''' True while the device is registered and its MQTT connection is online '''
        return self._loggedIn and self._client is not None and self._online is True

    def shutdown(self):
        client, self._client = self._client, None
        self._shadowHandler = None
        self._loggedIn = False
        self._online = None
        if client is not None:
            try:
                client.disconnect()
            except SDK_ERRORS as e:
                self._logger.warning('Failed to disconnect from server: {0}'.format(e))
        self._shutdownCore()

    def getUserId(self, timeout=MQTT_OPERATION_TIMEOUT):
        ''' Return the id of the user that owns the logged in device, read from the device shadow '''
        if not self.isDeviceLoggedIn():
            self._logger.error('Failed to get logged in device')
            return None

        done = threading.Event()
        result = {}

        def _getCallback(payload, responseStatus, token):
            if responseStatus == 'accepted':
                result['payload'] = payload
            else:
                self._logger.warning('Shadow get request {0} {1}'.format(token, responseStatus))
            done.set()

        try:
            self._shadowHandler.shadowGet(_getCallback, timeout)
        except SDK_ERRORS as e:
            self._logger.error('Failed to get logged in device: {0}'.format(e))
            return None

        if not done.wait(timeout) or 'payload' not in result:
            self._logger.error('Failed to get logged in device')
            return None

        try:
            document = json.loads(result['payload'])
        except ValueError as e:
            self._logger.error('Malformed device shadow: {0}'.format(e))
            return None
        state = _section(document, 'state')
        owner = _section(state, 'reported').get('owner') or _section(state, 'desired').get('owner')
        if not owner or not isinstance(owner, str):
            self._logger.error('Device has no owner')
            return None
        return owner

    def sendMessage(self, message):
        ''' Send a plain text message to the user that owns this device

        Args:
            message (`str`): The text to send

        Returns:
            True if the message was published

        '''
        userId = self.getUserId()
        if not userId:
            return False

        payload = json.dumps({
            'from': self._config.deviceName,
            'to': userId,
            'contentType': 'text/plain',
            'content': message,
            'expiry': MESSAGE_EXPIRY_TIMEOUT,
        })
        try:
            sent = self._client.getMQTTConnection().publish(MESSAGE_TOPIC.format(userId), payload, 1)
        except SDK_ERRORS as e:
            self._logger.error('Failed to send message to user: {0}'.format(e))
            return False
        if not sent:
            self._logger.error('Failed to send message to user')
            return False
        self._logger.info('Message sent to user = {0}'.format(message))
        return True


def registerFlowDevice(configLoader=loadRegistrationConfig, policy=RetryPolicy(FLOW_SERVER_CONNECT_TRIALS, 1), sleep=time.sleep, clientFactory=AWSIoTMQTTShadowClient, nvsPath=NVS_FILE):
    ''' Register with the cloud, retrying the whole sequence.

    Args:
        configLoader (callable): Returns the `RegistrationConfig`, or None if it is not available
        policy (:obj:`RetryPolicy`): How many registration attempts to make and how far apart

    Returns:
        A logged in `FlowClient`, or None once every attempt has failed.  The gateway then runs without notifications.

    '''
    logger = logging.getLogger(__name__)
    for attempt in attempts(policy):
        config = configLoader()
        if config is not None:
            client = FlowClient(config, nvsPath=nvsPath, clientFactory=clientFactory)
            if client.register():
                return client
        if policy.attempts is not None:
            logger.info('Try to connect to Flow Server for {0} more trials..'.format(policy.attempts - attempt + 1))
        sleep(policy.delay)
    return None
