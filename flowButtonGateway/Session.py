# -*- coding: utf-8 -*-
import logging
from collections import OrderedDict
import xml.etree.ElementTree as ET
from enum import Enum

from flowButtonGateway.Ipc import (AwaError, IpcChannel, IpcError, addPath, decodeInteger, findChild,
                                   findPath, newRequest, parsePath, pathResult, subElement)

OPERATION_TIMEOUT = 5000 # milliseconds

class ResourceType(Enum):
    INTEGER = 'Integer'
    BOOLEAN = 'Boolean'

class ResourceOperations(Enum):
    READ_ONLY = 'ReadOnly'
    WRITE_ONLY = 'WriteOnly'
    READ_WRITE = 'ReadWrite'

class SessionState(Enum):
    UNCONNECTED = 'unconnected'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'


class ResourceDefinition(object):
    def __init__(self, id, name, type, mandatory, operations, default=None):
        self.id = id
        self.name = name
        self.type = type
        self.mandatory = mandatory
        self.operations = operations
        self.default = default

    @property
    def minInstances(self):
        return 1 if self.mandatory else 0

    @property
    def maxInstances(self):
        return 1


class ObjectDefinition(object):
    ''' Describes an LWM2M object and its resources so that it can be defined on a daemon

        Args:
            id (`int`): The object ID
            name (`str`): The object's serialisation name
            minInstances (`int`): The minimum number of object instances
            maxInstances (`int`): The maximum number of object instances

    '''
    def __init__(self, id, name, minInstances, maxInstances):
        self.id = id
        self.name = name
        self.minInstances = minInstances
        self.maxInstances = maxInstances
        self._resources = OrderedDict()

    @property
    def resources(self):
        return list(self._resources.values())

    def getResourceDefinition(self, resourceID):
        return self._resources.get(resourceID)

    def _addResource(self, definition):
        if definition.id in self._resources:
            raise IpcError(AwaError.ALREADY_DEFINED, 'resource {0} already defined on object {1}'.format(definition.id, self.id))
        self._resources[definition.id] = definition

    def addResourceDefinitionAsInteger(self, id, name, mandatory, operations, default=0):
        self._addResource(ResourceDefinition(id, name, ResourceType.INTEGER, mandatory, operations, default))

    def addResourceDefinitionAsBoolean(self, id, name, mandatory, operations, default=None):
        self._addResource(ResourceDefinition(id, name, ResourceType.BOOLEAN, mandatory, operations, default))

    def toElement(self, parent):
        element = subElement(parent, 'ObjectDefinition')
        subElement(element, 'ObjectID', self.id)
        subElement(element, 'SerialisationName', self.name)
        subElement(element, 'MinimumInstances', self.minInstances)
        subElement(element, 'MaximumInstances', self.maxInstances)
        properties = subElement(element, 'Properties')
        for r in self._resources.values():
            prop = subElement(properties, 'PropertyDefinition')
            subElement(prop, 'PropertyID', r.id)
            subElement(prop, 'SerialisationName', r.name)
            subElement(prop, 'DataType', r.type.value)
            subElement(prop, 'MinimumInstances', r.minInstances)
            subElement(prop, 'MaximumInstances', r.maxInstances)
            subElement(prop, 'Access', r.operations.value)
            if r.default is not None:
                subElement(prop, 'DefaultValue', r.default)
        return element

    @classmethod
    def fromElement(cls, element):
        ''' Build a definition from the <ObjectDefinition> element returned by a daemon '''
        try:
            definition = cls(int(element.findtext('ObjectID')),
                             element.findtext('SerialisationName', ''),
                             int(element.findtext('MinimumInstances', '0')),
                             int(element.findtext('MaximumInstances', '1')))
            for prop in element.findall('Properties/PropertyDefinition'):
                definition._addResource(ResourceDefinition(
                    int(prop.findtext('PropertyID')),
                    prop.findtext('SerialisationName', ''),
                    ResourceType(prop.findtext('DataType')),
                    prop.findtext('MinimumInstances', '0') != '0',
                    ResourceOperations(prop.findtext('Access', 'ReadWrite')),
                    prop.findtext('DefaultValue')))
        except (TypeError, ValueError) as e:
            raise IpcError(AwaError.DEFINITION_INVALID, str(e)) from e
        return definition


class _Session(object):
    ''' Common behaviour of client and server sessions.

        A session owns one IPC channel.  It is connected once and, once disconnected, is never reused; callers create a fresh session instead.

    '''
    _logger = logging.getLogger(__name__)
    side = 'session'

    def __init__(self, address, port, channel=None):
        self.address = address
        self.port = port
        self._channel = channel if channel is not None else IpcChannel(address, port)
        self._sessionID = None
        self._definitions = {}
        self.state = SessionState.UNCONNECTED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def isConnected(self):
        return self.state is SessionState.CONNECTED

    def connect(self, timeout=OPERATION_TIMEOUT):
        ''' Open the channel, start a session on the daemon and load the objects it already has defined '''
        if self.state is not SessionState.UNCONNECTED:
            raise IpcError(AwaError.SESSION_INVALID, '{0} cannot be reconnected'.format(self.side))
        try:
            self._channel.open()
            response = self._channel.send(newRequest('Connect'), timeout)
            self._sessionID = response.findtext('SessionID')
            self.state = SessionState.CONNECTED
            self.refreshDefinitions(timeout)
        except IpcError:
            self._channel.close()
            self.state = SessionState.UNCONNECTED
            self._sessionID = None
            raise

    def disconnect(self, timeout=OPERATION_TIMEOUT):
        if not self.isConnected:
            raise IpcError(AwaError.SESSION_NOT_CONNECTED)
        try:
            self._channel.send(newRequest('Disconnect', self._sessionID), timeout)
        finally:
            self.state = SessionState.DISCONNECTED
            self._channel.close()

    def close(self):
        ''' Release the session.  A still connected session is disconnected first '''
        if self.isConnected:
            try:
                self.disconnect()
            except IpcError as e:
                self._logger.warning('Failed to disconnect {0}: {1}'.format(self.side, e))
        self._channel.close()
        if self.state is SessionState.UNCONNECTED:
            self.state = SessionState.DISCONNECTED

    def _send(self, type, timeout, content=None):
        if not self.isConnected:
            raise IpcError(AwaError.SESSION_NOT_CONNECTED)
        request = newRequest(type, self._sessionID)
        if content is not None:
            request.append(content)
        return self._channel.send(request, timeout)

    def refreshDefinitions(self, timeout=OPERATION_TIMEOUT):
        response = self._send('ListDefinition', timeout)
        definitions = {}
        for element in response.findall('Content/ObjectDefinitions/ObjectDefinition'):
            definition = ObjectDefinition.fromElement(element)
            definitions[definition.id] = definition
        self._definitions = definitions

    def isObjectDefined(self, objectID):
        return objectID in self._definitions

    def getObjectDefinition(self, objectID):
        return self._definitions.get(objectID)

    def pathToIDs(self, path):
        ''' Split a path into (objectID, objectInstanceID, resourceID), using None for the parts the path does not have '''
        ids = parsePath(path)
        return ids + (None,) * (3 - len(ids))

    def define(self, definitions, timeout=OPERATION_TIMEOUT):
        content = newContent()
        parent = subElement(content, 'ObjectDefinitions')
        for d in definitions:
            d.toElement(parent)
        response = self._send('Define', timeout, content)
        for element in response.findall('Content/ObjectDefinitions/ObjectDefinition'):
            error = pathResult(element)
            if error is not AwaError.SUCCESS:
                raise IpcError(error, 'object {0} not defined on {1}'.format(element.findtext('ObjectID'), self.side))
        for d in definitions:
            self._definitions[d.id] = d


def newContent():
    return ET.Element('Content')


class DefineOperation(object):
    ''' Collects object definitions and submits them to a session in a single request '''

    def __init__(self, session):
        if session is None:
            raise IpcError(AwaError.SESSION_INVALID, 'no session for define operation')
        self._session = session
        self._definitions = OrderedDict()

    @property
    def count(self):
        return len(self._definitions)

    def add(self, definition):
        if definition is None or not definition.resources:
            raise IpcError(AwaError.DEFINITION_INVALID, 'empty object definition')
        if definition.id in self._definitions or self._session.isObjectDefined(definition.id):
            raise IpcError(AwaError.ALREADY_DEFINED, 'object {0} already defined'.format(definition.id))
        self._definitions[definition.id] = definition

    def perform(self, timeout=OPERATION_TIMEOUT):
        self._session.define(list(self._definitions.values()), timeout)


def checkResults(objects, paths, side):
    for path in paths:
        element = findPath(objects, path)
        if element is None:
            continue
        error = pathResult(element)
        if error is not AwaError.SUCCESS:
            raise IpcError(error, '{0} on {1}'.format(path, side))


class GetResponse(object):
    def __init__(self, objects):
        self._objects = objects

    def containsPath(self, path):
        element = findPath(self._objects, path)
        return element is not None and pathResult(element) is AwaError.SUCCESS


class SetOperation(object):
    ''' Collects changes to apply to the client daemon's local objects '''

    def __init__(self, session):
        if session is None:
            raise IpcError(AwaError.SESSION_INVALID, 'no session for set operation')
        self._session = session
        self._objects = ET.Element('Objects')
        self._paths = []

    def createObjectInstance(self, path):
        if len(parsePath(path)) != 2:
            raise IpcError(AwaError.PATH_INVALID, path)
        addPath(self._objects, path, create=True)
        self._paths.append(path)

    def createOptionalResource(self, path):
        if len(parsePath(path)) != 3:
            raise IpcError(AwaError.PATH_INVALID, path)
        addPath(self._objects, path, create=True)
        self._paths.append(path)

    def addValueAsBoolean(self, path, value):
        addPath(self._objects, path, value=bool(value))
        self._paths.append(path)

    def perform(self, timeout=OPERATION_TIMEOUT):
        self._session.set(self._objects, self._paths, timeout)


class ClientSession(_Session):
    ''' A session with the LWM2M client daemon running on the gateway '''
    side = 'client'

    def get(self, paths, timeout=OPERATION_TIMEOUT):
        content = newContent()
        objects = subElement(content, 'Objects')
        for path in paths:
            addPath(objects, path)
        response = self._send('Get', timeout, content)
        return GetResponse(response.find('Content/Objects'))

    def set(self, objects, paths, timeout=OPERATION_TIMEOUT):
        content = newContent()
        content.append(objects)
        response = self._send('Set', timeout, content)
        checkResults(response.find('Content/Objects'), paths, self.side)


class ReadResponse(object):
    def __init__(self, clientID, objects):
        self.clientID = clientID
        self._objects = objects

    def getValueAsInteger(self, path):
        ''' Return the integer value at path, or None when the response holds no value for it '''
        element = findPath(self._objects, path)
        if element is None or pathResult(element) is not AwaError.SUCCESS:
            return None
        text = element.findtext('Value')
        if text is None:
            return None
        return decodeInteger(text)


class ServerSession(_Session):
    ''' A session with the LWM2M server daemon that constrained devices register with '''
    side = 'server'

    def _clientContent(self, clientID, paths, values=None):
        content = newContent()
        client = subElement(subElement(content, 'Clients'), 'Client')
        subElement(client, 'ID', clientID)
        objects = subElement(client, 'Objects')
        for path in paths:
            addPath(objects, path, value=None if values is None else values[path])
        return content

    def _clientObjects(self, response, clientID):
        clients = response.find('Content/Clients')
        client = findChild(clients, 'Client', clientID) if clients is not None else None
        if client is None:
            raise IpcError(AwaError.CLIENT_NOT_FOUND, clientID)
        error = pathResult(client)
        if error is not AwaError.SUCCESS:
            raise IpcError(error, clientID)
        return client.find('Objects')

    def read(self, clientID, path, timeout=OPERATION_TIMEOUT):
        response = self._send('Read', timeout, self._clientContent(clientID, [path]))
        return ReadResponse(clientID, self._clientObjects(response, clientID))

    def write(self, clientID, values, timeout=OPERATION_TIMEOUT, mode='Update'):
        ''' Write resource values on a registered client

        Args:
            clientID (`str`): The endpoint name of the client
            values (`dict`): Resource path to value
            timeout (`int`): Milliseconds to wait for the daemon
            mode (`str`): 'Update' or 'Replace'

        '''
        content = self._clientContent(clientID, list(values), values)
        subElement(content, 'WriteMode', mode)
        response = self._send('Write', timeout, content)
        checkResults(self._clientObjects(response, clientID), list(values), self.side)

    def listClients(self, timeout=OPERATION_TIMEOUT):
        response = self._send('ListClients', timeout)
        return [c.findtext('ID') for c in response.findall('Content/Clients/Client')]


def _establish(cls, name, port, address, channel=None):
    logger = logging.getLogger(__name__)
    session = cls(address, port, channel)
    try:
        session.connect()
    except IpcError as e:
        logger.error('{0} connect failed\nerror: {1}'.format(name, e.error))
        session.close()
        return None
    logger.info('{0} established'.format(name))
    return session

def establishClientSession(port, address, channel=None):
    ''' Create a fresh connected client session.  Returns None on failure '''
    return _establish(ClientSession, 'Client session', port, address, channel)

def establishServerSession(port, address, channel=None):
    ''' Create a fresh connected server session.  Returns None on failure '''
    return _establish(ServerSession, 'Server session', port, address, channel)
