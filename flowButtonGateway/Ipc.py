# -*- coding: utf-8 -*-
import logging
import socket
import time
import xml.etree.ElementTree as ET
from enum import Enum

from flowButtonGateway.Errors import FlowGatewayError

IPC_BUFFER_SIZE = 65535

class AwaError(Enum):
    ''' Error codes reported by the device management daemons and by the IPC layer '''
    SUCCESS = 'AwaError_Success'
    UNSPECIFIED = 'AwaError_Unspecified'
    TIMEOUT = 'AwaError_Timeout'
    IPC_ERROR = 'AwaError_IPCError'
    RESPONSE = 'AwaError_Response'
    SESSION_NOT_CONNECTED = 'AwaError_SessionNotConnected'
    SESSION_INVALID = 'AwaError_SessionInvalid'
    PATH_INVALID = 'AwaError_PathInvalid'
    PATH_NOT_FOUND = 'AwaError_PathNotFound'
    DEFINITION_INVALID = 'AwaError_DefinitionInvalid'
    ALREADY_DEFINED = 'AwaError_AlreadyDefined'
    CLIENT_NOT_FOUND = 'AwaError_ClientNotFound'
    TYPE_MISMATCH = 'AwaError_TypeMismatch'

    def __str__(self):
        return self.value

    @classmethod
    def fromString(cls, value):
        for error in cls:
            if error.value == value:
                return error
        return cls.UNSPECIFIED


class IpcError(FlowGatewayError):
    ''' Raised when a request to a device management daemon does not succeed

        Args:
            error (:obj:`AwaError`): The error code.  Its string form is what gets logged
            message (`str`, optional): Additional detail

    '''
    def __init__(self, error, message=None):
        self.error = error
        self.message = message
        super(IpcError, self).__init__('{0}: {1}'.format(error, message) if message else str(error))


def subElement(parent, tag, text=None):
    element = ET.SubElement(parent, tag)
    if text is not None:
        element.text = str(text)
    return element

def parsePath(path):
    ''' Split an LWM2M path such as /3311/0/5850 into a tuple of integer IDs '''
    if not isinstance(path, str) or not path.startswith('/'):
        raise IpcError(AwaError.PATH_INVALID, path)
    parts = path.strip('/').split('/')
    if not 1 <= len(parts) <= 3:
        raise IpcError(AwaError.PATH_INVALID, path)
    try:
        ids = tuple(int(p) for p in parts)
    except ValueError:
        raise IpcError(AwaError.PATH_INVALID, path) from None
    if any(i < 0 for i in ids):
        raise IpcError(AwaError.PATH_INVALID, path)
    return ids

def findChild(parent, tag, id):
    for child in parent.findall(tag):
        if child.findtext('ID') == str(id):
            return child
    return None

def addPath(objects, path, value=None, create=False):
    ''' Merge a path into an <Objects> tree, returning the deepest element created or found

        Args:
            objects (:obj:`Element`): The <Objects> element to add the path to
            path (`str`): The LWM2M path
            value (optional): Value to attach to a resource path
            create (`bool`): Mark the target of the path for creation

    '''
    ids = parsePath(path)
    tags = ('Object', 'ObjectInstance', 'Resource')
    node = objects
    for tag, id in zip(tags, ids):
        child = findChild(node, tag, id)
        if child is None:
            child = subElement(node, tag)
            subElement(child, 'ID', id)
        node = child
    if create:
        subElement(node, 'Create')
    if value is not None:
        if len(ids) != 3:
            raise IpcError(AwaError.PATH_INVALID, 'value given for non-resource path {0}'.format(path))
        subElement(node, 'Value', encodeValue(value))
    return node

def findPath(objects, path):
    ''' Return the element in an <Objects> tree that matches path or None if it is not present '''
    if objects is None:
        return None
    node = objects
    for tag, id in zip(('Object', 'ObjectInstance', 'Resource'), parsePath(path)):
        node = findChild(node, tag, id)
        if node is None:
            return None
    return node

def pathResult(element):
    ''' Return the AwaError reported for an element of a response.  Missing results count as success '''
    text = element.findtext('Result/Error')
    return AwaError.SUCCESS if text is None else AwaError.fromString(text)

def encodeValue(value):
    if isinstance(value, bool):
        return 'True' if value else 'False'
    return str(value)

def decodeInteger(text):
    try:
        return int(text)
    except (TypeError, ValueError):
        raise IpcError(AwaError.TYPE_MISMATCH, 'expected integer, got {0!r}'.format(text)) from None

def responseType(data):
    ''' Return the Type of a response datagram, or None if it cannot be parsed '''
    try:
        return ET.fromstring(data).findtext('Type')
    except ET.ParseError:
        return None

def newRequest(type, sessionID=None):
    request = ET.Element('Request')
    subElement(request, 'Type', type)
    if sessionID is not None:
        subElement(request, 'SessionID', sessionID)
    return request


class IpcChannel(object):
    ''' A connectionless (UDP) channel to a device management daemon.

        Each request is one XML datagram and each response is one XML datagram.  The channel does not retry; a lost datagram surfaces as a timeout.

        Args:
            address (`str`): IP address of the daemon (normally 127.0.0.1)
            port (`int`): IPC port of the daemon

    '''
    _logger = logging.getLogger(__name__)

    def __init__(self, address, port):
        self._address = address
        self._port = port
        self._socket = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def isOpen(self):
        return self._socket is not None

    def open(self):
        if self._socket is not None:
            return
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise IpcError(AwaError.IPC_ERROR, 'unable to create socket: {0}'.format(e)) from e
        try:
            sock.connect((self._address, self._port))
        except OSError as e:
            sock.close()
            raise IpcError(AwaError.IPC_ERROR, 'unable to reach {0}:{1}: {2}'.format(self._address, self._port, e)) from e
        self._socket = sock

    def close(self):
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    def send(self, request, timeout):
        ''' Send a request and wait for its response

        Args:
            request (:obj:`Element`): The <Request> document
            timeout (`int`): Time to wait for the response in milliseconds

        Returns:
            The <Response> element.  Its Code has already been checked.

        Raises:
            IpcError: on timeout, transport failure, malformed response or error code

        '''
        if not self.isOpen:
            raise IpcError(AwaError.SESSION_NOT_CONNECTED)

        requestType = request.findtext('Type')
        data = ET.tostring(request)
        self._logger.debug('IPC request to port {0}: {1}'.format(self._port, data))
        reply = self._exchange(data, requestType, timeout)
        self._logger.debug('IPC response from port {0}: {1}'.format(self._port, reply))

        try:
            response = ET.fromstring(reply)
        except ET.ParseError as e:
            raise IpcError(AwaError.IPC_ERROR, 'malformed response: {0}'.format(e)) from e

        if response.tag != 'Response' or response.findtext('Type') != requestType:
            raise IpcError(AwaError.IPC_ERROR, 'unexpected response to {0} request'.format(requestType))

        code = response.findtext('Code', '')
        if not code.startswith('2'):
            raise IpcError(AwaError.RESPONSE, '{0} request returned code {1}'.format(requestType, code))
        return response

    def _drain(self):
        ''' Drop datagrams that are already queued, such as replies that arrived after their request timed out '''
        self._socket.setblocking(False)
        while True:
            try:
                stale = self._socket.recv(IPC_BUFFER_SIZE)
            except BlockingIOError:
                return
            except OSError as e:
                self._logger.debug('IPC socket error on port {0} while draining: {1}'.format(self._port, e))
                return
            self._logger.debug('Dropped stale IPC datagram from port {0}: {1}'.format(self._port, stale))

    def _exchange(self, data, requestType, timeout):
        deadline = time.monotonic() + timeout / 1000.0
        try:
            self._drain()
            self._socket.settimeout(timeout / 1000.0)
            self._socket.send(data)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise IpcError(AwaError.TIMEOUT, '{0} request timed out'.format(requestType))
                self._socket.settimeout(remaining)
                reply = self._socket.recv(IPC_BUFFER_SIZE)
                replyType = responseType(reply)
                # Malformed replies are returned so that send() reports them
                if replyType is None or replyType == requestType:
                    return reply
                self._logger.debug('Dropped {0} reply while waiting for {1} on port {2}'.format(replyType, requestType, self._port))
        except socket.timeout:
            raise IpcError(AwaError.TIMEOUT, '{0} request timed out'.format(requestType)) from None
        except OSError as e:
            raise IpcError(AwaError.IPC_ERROR, str(e)) from e
