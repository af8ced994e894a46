# -*- coding: utf-8 -*-
import logging
from collections import namedtuple

from flowButtonGateway.Session import ObjectDefinition, ResourceOperations, ResourceType

logger = logging.getLogger(__name__)

FLOW_ACCESS_OBJECT_ID = 20001
FLOW_OBJECT_INSTANCE_ID = 0

BUTTON_OBJECT_ID = 3200
BUTTON_RESOURCE_ID = 5501
LED_OBJECT_ID = 3311
LED_RESOURCE_ID = 5850

MIN_INSTANCES = 0
MAX_INSTANCES = 1

ResourceDescriptor = namedtuple('ResourceDescriptor', ['id', 'instanceID', 'type', 'name'])
ObjectDescriptor = namedtuple('ObjectDescriptor', ['clientID', 'id', 'instanceID', 'name', 'resources'])

BUTTON_OBJECT = ObjectDescriptor('ButtonDevice', BUTTON_OBJECT_ID, 0, 'DigitalInput',
                                 (ResourceDescriptor(BUTTON_RESOURCE_ID, 0, ResourceType.INTEGER, 'Counter'),))
LED_OBJECT = ObjectDescriptor('LedDevice', LED_OBJECT_ID, 0, 'LightControl',
                              (ResourceDescriptor(LED_RESOURCE_ID, 0, ResourceType.BOOLEAN, 'On/Off'),))

DEFAULT_CATALOG = (BUTTON_OBJECT, LED_OBJECT)

def _checkID(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError('{0!r} is not a valid LWM2M ID'.format(value))
    return value

def makeObjectInstancePath(objectID, instanceID):
    return '/{0}/{1}'.format(_checkID(objectID), _checkID(instanceID))

def makeResourcePath(objectID, instanceID, resourceID):
    return '/{0}/{1}/{2}'.format(_checkID(objectID), _checkID(instanceID), _checkID(resourceID))

def instancePath(descriptor):
    return makeObjectInstancePath(descriptor.id, descriptor.instanceID)

def resourcePath(descriptor, resource=None):
    ''' Path of a resource of the object, the first resource if none is given '''
    resource = resource if resource is not None else descriptor.resources[0]
    return makeResourcePath(descriptor.id, descriptor.instanceID, resource.id)

def findObject(catalog, objectID):
    for descriptor in catalog:
        if descriptor.id == objectID:
            return descriptor
    return None

def buildObjectDefinition(descriptor):
    ''' Build the definition submitted to a daemon for a catalog entry.

        Every resource is mandatory, read-write and single instance.  Returns None if the descriptor holds a resource of a type that cannot be defined.

    '''
    definition = ObjectDefinition(descriptor.id, descriptor.name, MIN_INSTANCES, MAX_INSTANCES)
    for resource in descriptor.resources:
        if resource.type is ResourceType.INTEGER:
            definition.addResourceDefinitionAsInteger(resource.id, resource.name, True, ResourceOperations.READ_WRITE, 0)
        elif resource.type is ResourceType.BOOLEAN:
            definition.addResourceDefinitionAsBoolean(resource.id, resource.name, True, ResourceOperations.READ_WRITE, None)
        else:
            logger.error('Could not add resource definition ({0} [{1}]) to object definition.'.format(resource.name, resource.id))
            return None
    return definition
