# -*- coding: utf-8 -*-
import functools
import logging
import time
from datetime import datetime, timezone

from flowButtonGateway.Catalog import (BUTTON_OBJECT_ID, DEFAULT_CATALOG, FLOW_ACCESS_OBJECT_ID, FLOW_OBJECT_INSTANCE_ID,
                                       LED_OBJECT_ID, buildObjectDefinition, findObject, instancePath,
                                       makeObjectInstancePath, resourcePath)
from flowButtonGateway.Cloud import FLOW_SERVER_CONNECT_TRIALS, registerFlowDevice
from flowButtonGateway.Config import CONFIG_FILE, RetryPolicy, attempts, loadRegistrationConfig
from flowButtonGateway.Heartbeat import HeartbeatLed
from flowButtonGateway.Ipc import IpcError
from flowButtonGateway.Session import (OPERATION_TIMEOUT, DefineOperation, SetOperation, establishClientSession,
                                       establishServerSession)

IPC_CLIENT_PORT = 12345
IPC_SERVER_PORT = 54321
IP_ADDRESS = '127.0.0.1'
ON_STR = 'on'
OFF_STR = 'off'

logger = logging.getLogger(__name__)

def utcNow():
    return datetime.now(timezone.utc)


class GatewayContext(object):
    ''' Everything the gateway needs, passed explicitly instead of living in module globals.

        Args:
            catalog (`tuple` of :obj:`ObjectDescriptor`): Objects to define and use.  Must hold the button and LED objects
            heartbeat (:obj:`HeartbeatLed`, optional): Status LED driver
            address (`str`): Address of the device management daemons
            clientPort (`int`): IPC port of the LWM2M client daemon
            serverPort (`int`): IPC port of the LWM2M server daemon
            timeout (`int`): Timeout of daemon operations in milliseconds
            configPath (`str`): Path of the registration data written by the provisioning tool
            registrationPolicy (:obj:`RetryPolicy`): Retries for cloud registration
            provisioningPolicy (:obj:`RetryPolicy`): Retries while waiting for provisioning.  Unbounded by default
            constrainedPolicy (:obj:`RetryPolicy`): Retries while waiting for constrained devices.  Unbounded by default
            rebuildDelay (`float`): Seconds to wait before re-creating the server session
            sleep (callable): Sleep function
            clock (callable): Returns the current time as an aware datetime

    '''
    def __init__(self, catalog=DEFAULT_CATALOG, heartbeat=None, address=IP_ADDRESS, clientPort=IPC_CLIENT_PORT,
                 serverPort=IPC_SERVER_PORT, timeout=OPERATION_TIMEOUT, configPath=CONFIG_FILE,
                 registrationPolicy=RetryPolicy(FLOW_SERVER_CONNECT_TRIALS, 1), provisioningPolicy=RetryPolicy(None, 2),
                 constrainedPolicy=RetryPolicy(None, 1), rebuildDelay=1, sleep=time.sleep, clock=utcNow,
                 clientSessionFactory=establishClientSession, serverSessionFactory=establishServerSession,
                 cloudRegistrar=registerFlowDevice):
        self.catalog = tuple(catalog)
        self.button = findObject(self.catalog, BUTTON_OBJECT_ID)
        self.led = findObject(self.catalog, LED_OBJECT_ID)
        if self.button is None or self.led is None:
            raise ValueError('catalog must describe the button and LED objects')
        self.heartbeat = heartbeat if heartbeat is not None else HeartbeatLed()
        self.address = address
        self.clientPort = clientPort
        self.serverPort = serverPort
        self.timeout = timeout
        self.configPath = configPath
        self.registrationPolicy = registrationPolicy
        self.provisioningPolicy = provisioningPolicy
        self.constrainedPolicy = constrainedPolicy
        self.rebuildDelay = rebuildDelay
        self.sleep = sleep
        self.clock = clock
        self.clientSessionFactory = clientSessionFactory
        self.serverSessionFactory = serverSessionFactory
        self.cloudRegistrar = cloudRegistrar

        # Set once during bootstrap, None when the gateway runs without the cloud
        self.cloud = None

    @property
    def isDeviceRegistered(self):
        return self.cloud is not None

    def newClientSession(self):
        return self.clientSessionFactory(self.clientPort, self.address)

    def newServerSession(self):
        return self.serverSessionFactory(self.serverPort, self.address)


def buttonParity(value):
    ''' The LED follows the parity of the button counter: odd is on, even is off '''
    return value % 2 == 1

def formatLedMessage(ledState, now):
    return '{0} LED {1}'.format(now.astimezone(timezone.utc).strftime('%H:%M:%S %d-%m-%Y'), ON_STR if ledState else OFF_STR)

def defineObjects(session, catalog, timeout=OPERATION_TIMEOUT):
    ''' Define every catalog object that the session's daemon does not know yet.

    Objects that are already defined are skipped, so calling this again is harmless.  A rejected object does not stop the others from being defined.

    Returns:
        False if any object could not be added or the define request failed, otherwise True

    '''
    if session is None:
        logger.error('Null parameter passed to defineObjects()')
        return False

    side = session.side
    logger.info('Defining flow objects on {0}'.format(side))

    try:
        operation = DefineOperation(session)
    except IpcError as e:
        logger.error('Failed to create define operation for session on {0}: {1}'.format(side, e))
        return False

    success = True
    for descriptor in catalog:
        if session.isObjectDefined(descriptor.id):
            logger.debug('{0} object already defined on {1}'.format(descriptor.name, side))
            continue

        definition = buildObjectDefinition(descriptor)
        if definition is None:
            success = False
            continue
        try:
            operation.add(definition)
        except IpcError as e:
            logger.error('Failed to add object definition {0} to define operation on {1}\nerror: {2}'.format(descriptor.name, side, e.error))
            success = False

    if operation.count:
        try:
            operation.perform(timeout)
        except IpcError as e:
            logger.error('Failed to perform define operation on {0}\nerror: {1}'.format(side, e.error))
            success = False
    return success

def waitForProvisioning(session, timeout=OPERATION_TIMEOUT):
    ''' Check once whether the flow access object is visible on the client, which shows the gateway has been provisioned '''
    if session is None:
        return False
    path = makeObjectInstancePath(FLOW_ACCESS_OBJECT_ID, FLOW_OBJECT_INSTANCE_ID)
    try:
        response = session.get([path], timeout)
    except IpcError as e:
        logger.debug('Provisioning check failed: {0}'.format(e))
        return False
    if response.containsPath(path):
        logger.info('Gateway is provisioned.')
        return True
    return False

def isClientRegistered(session, clientID, timeout=OPERATION_TIMEOUT):
    ''' Check once whether a constrained device has registered with the server '''
    if session is None:
        logger.error('Null parameter passed to isClientRegistered()')
        return False
    try:
        clients = session.listClients(timeout)
    except IpcError as e:
        logger.error('List clients operation on server failed\nerror: {0}'.format(e.error))
        return False
    if clientID in clients:
        logger.info('Constrained device {0} registered'.format(clientID))
        return True
    return False

def isLedObjectDefined(session, led, timeout=OPERATION_TIMEOUT):
    path = instancePath(led)
    try:
        return session.get([path], timeout).containsPath(path)
    except IpcError as e:
        logger.debug('Get of {0} on client failed: {1}'.format(path, e))
        return False

def setLedResource(session, led, value, timeout=OPERATION_TIMEOUT):
    ''' Set the LED resource on the local LWM2M client, creating the resource and object instance when they are missing '''
    if session is None:
        logger.error('Null parameter passed to setLedResource()')
        return False
    path = resourcePath(led)
    try:
        operation = SetOperation(session)
        operation.createOptionalResource(path)
        if not isLedObjectDefined(session, led, timeout):
            operation.createObjectInstance(instancePath(led))
        operation.addValueAsBoolean(path, value)
        operation.perform(timeout)
    except IpcError as e:
        logger.error('Set operation on client failed\nerror: {0}'.format(e.error))
        return False
    logger.info('Set {0:d} on client.'.format(value))
    return True

def isResourceDefined(session, path):
    try:
        objectID, _, resourceID = session.pathToIDs(path)
    except IpcError as e:
        logger.error('Unable to split path {0}\nerror: {1}'.format(path, e.error))
        return False
    definition = session.getObjectDefinition(objectID)
    if definition is None:
        logger.error('Object {0} is not defined on server'.format(objectID))
        return False
    return definition.getResourceDefinition(resourceID) is not None

def writeLedResource(session, led, value, timeout=OPERATION_TIMEOUT):
    ''' Write the LED resource of the remote LED device through the server '''
    if session is None:
        logger.error('Null parameter passed to writeLedResource()')
        return False
    path = resourcePath(led)
    if not isResourceDefined(session, path):
        return False
    try:
        session.write(led.clientID, {path: value}, timeout, mode='Update')
    except IpcError as e:
        logger.error('Write operation on server failed\nerror: {0}'.format(e.error))
        return False
    logger.info('Written {0:d} to server.'.format(value))
    return True


class Gateway(object):
    ''' Mirrors the parity of a button counter on one constrained device onto an LED on another, and tells the device's owner when the LED changes.

        Args:
            context (:obj:`GatewayContext`): Settings and collaborators

    '''
    _logger = logging.getLogger(__name__)

    def __init__(self, context):
        self._context = context
        self.clientSession = None
        self.serverSession = None

    def performUpdate(self, clientSession, serverSession, ledState):
        ''' Update the LED on server and client and notify the user.  Each step is attempted even if an earlier one failed '''
        ctx = self._context
        if not writeLedResource(serverSession, ctx.led, ledState, ctx.timeout):
            self._logger.error('Writing to LED resource on server failed.')

        if not setLedResource(clientSession, ctx.led, ledState, ctx.timeout):
            self._logger.error('Setting to LED resource on client failed.')

        if ctx.isDeviceRegistered:
            if not ctx.cloud.sendMessage(formatLedMessage(ledState, ctx.clock())):
                self._logger.error('Flow message send failed')

    def pollButtonState(self, clientSession, serverSession):
        ''' Poll the button on the server and update the LED whenever its parity changes.

        The last seen parity is forgotten each time this is called, so the first successful read always updates the LED.

        Returns:
            True when a read failed and the server session should be rebuilt before calling again.  False if polling cannot start at all.

        '''
        ctx = self._context
        try:
            path = resourcePath(ctx.button)
        except ValueError as e:
            self._logger.error("Couldn't generate button resource path: {0}".format(e))
            return False

        if serverSession is None:
            self._logger.error('No server session to poll')
            return True

        cachedParity = None
        while True:
            try:
                response = serverSession.read(ctx.button.clientID, path, ctx.timeout)
                value = response.getValueAsInteger(path)
            except IpcError as e:
                self._logger.error('Read operation on server failed\nerror: {0}'.format(e.error))
                return True

            if value is not None:
                parity = buttonParity(value)
                if parity != cachedParity:
                    self.performUpdate(clientSession, serverSession, parity)
                    cachedParity = parity

            ctx.heartbeat.pulse(ctx.sleep, 1)

    def waitUntilProvisioned(self):
        ''' Keep re-creating the client session until the gateway shows up as provisioned '''
        ctx = self._context
        self._logger.info('Wait until device is provisioned')
        for attempt in attempts(ctx.provisioningPolicy):
            if waitForProvisioning(self.clientSession, ctx.timeout):
                return True
            self._logger.info('Waiting...')
            self._releaseClientSession()
            ctx.sleep(ctx.provisioningPolicy.delay)
            self.clientSession = ctx.newClientSession()
        return False

    def registerWithCloud(self):
        ctx = self._context
        loader = functools.partial(loadRegistrationConfig, ctx.configPath, sleep=ctx.sleep)
        ctx.cloud = ctx.cloudRegistrar(configLoader=loader, policy=ctx.registrationPolicy, sleep=ctx.sleep)
        if ctx.cloud is None:
            self._logger.warning('Running without flow messaging')
        return ctx.isDeviceRegistered

    def waitForConstrainedDevices(self):
        ctx = self._context
        for descriptor in ctx.catalog:
            self._logger.info("Waiting for constrained device '{0}' to be up".format(descriptor.clientID))
            for attempt in attempts(ctx.constrainedPolicy):
                if isClientRegistered(self.serverSession, descriptor.clientID, ctx.timeout):
                    break
                ctx.sleep(ctx.constrainedPolicy.delay)
            else:
                return False
        return True

    def rebuildServerSession(self):
        ctx = self._context
        self._releaseServerSession()
        ctx.sleep(ctx.rebuildDelay)
        self.serverSession = ctx.newServerSession()

    def _releaseClientSession(self):
        session, self.clientSession = self.clientSession, None
        if session is not None:
            session.close()

    def _releaseServerSession(self):
        session, self.serverSession = self.serverSession, None
        if session is not None:
            session.close()

    def run(self):
        ''' Bootstrap the gateway and poll forever.

        Returns:
            -1, and only if the gateway could not be brought up or polling could not continue

        '''
        ctx = self._context
        self._logger.info('Flow Button Gateway Application')
        self._logger.info('------------------------')

        try:
            self.clientSession = ctx.newClientSession()
            if self.clientSession is not None:
                self._logger.info('Client session established')

            self.serverSession = ctx.newServerSession()
            if self.serverSession is None:
                self._logger.error('Failed to establish server session')

            ctx.heartbeat.set(True)
            if self.waitUntilProvisioned():
                self.registerWithCloud()

                if defineObjects(self.serverSession, ctx.catalog, ctx.timeout) and \
                   defineObjects(self.clientSession, ctx.catalog, ctx.timeout) and \
                   self.waitForConstrainedDevices():
                    while self.pollButtonState(self.clientSession, self.serverSession):
                        self.rebuildServerSession()
        finally:
            ctx.heartbeat.set(False)
            self._releaseServerSession()
            self._releaseClientSession()
            if ctx.cloud is not None:
                ctx.cloud.shutdown()

        self._logger.info('Flow Button Gateway Application Failure')
        return -1
