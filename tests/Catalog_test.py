import pytest

from flowButtonGateway.Catalog import (BUTTON_OBJECT, DEFAULT_CATALOG, LED_OBJECT, ObjectDescriptor, ResourceDescriptor,
                                       buildObjectDefinition, findObject, makeObjectInstancePath, makeResourcePath,
                                       resourcePath)
from flowButtonGateway.Session import ResourceOperations, ResourceType

def test_paths():
    assert(makeObjectInstancePath(20001, 0) == '/20001/0')
    assert(makeResourcePath(3200, 0, 5501) == '/3200/0/5501')
    assert(resourcePath(LED_OBJECT) == '/3311/0/5850')

@pytest.mark.parametrize('bad', [-1, '3', None, True, 1.5])
def test_bad_ids(bad):
    with pytest.raises(ValueError):
        makeResourcePath(3311, 0, bad)

def test_catalog():
    assert(DEFAULT_CATALOG == (BUTTON_OBJECT, LED_OBJECT))
    assert(findObject(DEFAULT_CATALOG, 3311).clientID == 'LedDevice')
    assert(findObject(DEFAULT_CATALOG, 3200).clientID == 'ButtonDevice')
    assert(findObject(DEFAULT_CATALOG, 1) is None)

def test_button_definition():
    definition = buildObjectDefinition(BUTTON_OBJECT)
    assert(definition.id == 3200 and definition.name == 'DigitalInput')
    assert((definition.minInstances, definition.maxInstances) == (0, 1))
    counter = definition.getResourceDefinition(5501)
    assert(counter.type is ResourceType.INTEGER)
    assert(counter.mandatory and counter.operations is ResourceOperations.READ_WRITE)
    assert(counter.default == 0)

def test_led_definition():
    led = buildObjectDefinition(LED_OBJECT).getResourceDefinition(5850)
    assert(led.type is ResourceType.BOOLEAN)
    assert(led.name == 'On/Off' and led.default is None)

def test_unsupported_resource_type():
    descriptor = ObjectDescriptor('Other', 9000, 0, 'Other', (ResourceDescriptor(1, 0, 'string', 'Name'),))
    assert(buildObjectDefinition(descriptor) is None)
