import pytest

from flowButtonGateway.Catalog import BUTTON_OBJECT, LED_OBJECT, buildObjectDefinition
from flowButtonGateway.Ipc import AwaError, IpcChannel, IpcError, newRequest, parsePath
from flowButtonGateway.Session import (ClientSession, DefineOperation, ServerSession, SessionState, SetOperation,
                                       establishClientSession, establishServerSession)

from tests import simulator


@pytest.fixture
def daemon(request):
    model = simulator.daemonModel('udp daemon')
    model.clients['ButtonDevice'] = { '/3200/0/5501': '7' }
    sim = simulator.daemonSimulator(model)
    sim.start()

    request.addfinalizer(sim.exit)
    return sim

def test_parse_path():
    assert(parsePath('/3311/0/5850') == (3311, 0, 5850))
    assert(parsePath('/20001/0') == (20001, 0))
    for bad in ['3311/0', '/a/0', '/1/2/3/4', '/-1/0', None]:
        with pytest.raises(IpcError):
            parsePath(bad)

def test_udp_round_trip(daemon):
    with IpcChannel('127.0.0.1', daemon.port) as channel:
        response = channel.send(newRequest('Connect'), 2000)
        assert(response.findtext('SessionID') == '1')
    assert(daemon.model.count('Connect') == 1)

def test_udp_timeout(daemon):
    daemon.model.drop.add('Connect')
    with IpcChannel('127.0.0.1', daemon.port) as channel:
        with pytest.raises(IpcError) as e:
            channel.send(newRequest('Connect'), 200)
    assert(e.value.error is AwaError.TIMEOUT)
    assert(str(e.value.error) == 'AwaError_Timeout')

def test_error_code_raises(daemon):
    daemon.model.fail.add('Connect')
    with IpcChannel('127.0.0.1', daemon.port) as channel:
        with pytest.raises(IpcError) as e:
            channel.send(newRequest('Connect'), 2000)
    assert(e.value.error is AwaError.RESPONSE)

def test_send_on_closed_channel():
    with pytest.raises(IpcError) as e:
        IpcChannel('127.0.0.1', 1).send(newRequest('Connect'), 100)
    assert(e.value.error is AwaError.SESSION_NOT_CONNECTED)

def test_server_session_over_udp(daemon):
    session = establishServerSession(daemon.port, '127.0.0.1')
    assert(session.isConnected)

    operation = DefineOperation(session)
    operation.add(buildObjectDefinition(BUTTON_OBJECT))
    operation.perform(2000)
    assert(session.isObjectDefined(3200))

    assert(session.listClients(2000) == ['ButtonDevice'])
    response = session.read('ButtonDevice', '/3200/0/5501', 2000)
    assert(response.getValueAsInteger('/3200/0/5501') == 7)

    session.close()
    assert(session.state is SessionState.DISCONNECTED)
    assert(daemon.model.count('Disconnect') == 1)

def test_establish_failure_releases_session():
    model = simulator.daemonModel()
    model.drop.add('Connect')
    channel = simulator.simulatedChannel(model)
    assert(establishClientSession(12345, '127.0.0.1', channel=channel) is None)
    assert(not channel.isOpen)

def test_session_is_not_reused():
    model = simulator.daemonModel()
    session = ClientSession('127.0.0.1', 0, simulator.simulatedChannel(model))
    session.connect()
    session.disconnect()
    with pytest.raises(IpcError):
        session.connect()
    with pytest.raises(IpcError) as e:
        session.get(['/20001/0'])
    assert(e.value.error is AwaError.SESSION_NOT_CONNECTED)

def test_context_manager_disconnects():
    model = simulator.daemonModel()
    with ClientSession('127.0.0.1', 0, simulator.simulatedChannel(model)) as session:
        session.connect()
    assert(model.count('Disconnect') == 1)
    assert(session.state is SessionState.DISCONNECTED)

def test_define_operation_rejects_known_objects():
    model = simulator.daemonModel()
    session = establishServerSession(0, '127.0.0.1', channel=simulator.simulatedChannel(model))
    operation = DefineOperation(session)
    operation.add(buildObjectDefinition(LED_OBJECT))
    with pytest.raises(IpcError) as e:
        operation.add(buildObjectDefinition(LED_OBJECT))
    assert(e.value.error is AwaError.ALREADY_DEFINED)
    assert(operation.count == 1)
    operation.perform()

    with pytest.raises(IpcError):
        DefineOperation(session).add(buildObjectDefinition(LED_OBJECT))
    session.close()

def test_definitions_survive_a_new_session():
    model = simulator.daemonModel()
    first = establishServerSession(0, '127.0.0.1', channel=simulator.simulatedChannel(model))
    first.define([buildObjectDefinition(LED_OBJECT)])
    first.close()

    second = establishServerSession(0, '127.0.0.1', channel=simulator.simulatedChannel(model))
    definition = second.getObjectDefinition(3311)
    assert(definition.name == 'LightControl')
    assert(definition.getResourceDefinition(5850).name == 'On/Off')
    assert(second.pathToIDs('/3311/0/5850') == (3311, 0, 5850))
    assert(second.pathToIDs('/3311') == (3311, None, None))
    second.close()

def test_set_without_instance_fails():
    model = simulator.daemonModel()
    session = establishClientSession(0, '127.0.0.1', channel=simulator.simulatedChannel(model))
    operation = SetOperation(session)
    operation.addValueAsBoolean('/3311/0/5850', True)
    with pytest.raises(IpcError) as e:
        operation.perform()
    assert(e.value.error is AwaError.PATH_NOT_FOUND)
    session.close()

def test_write_to_unknown_client():
    model = simulator.daemonModel()
    session = ServerSession('127.0.0.1', 0, simulator.simulatedChannel(model))
    session.connect()
    with pytest.raises(IpcError) as e:
        session.write('LedDevice', { '/3311/0/5850': True })
    assert(e.value.error is AwaError.CLIENT_NOT_FOUND)
    session.close()

def test_late_reply_is_not_taken_for_a_later_request(daemon):
    daemon.model.paths['/3311/0'] = None
    daemon.model.delay['Set'] = 0.4
    session = establishClientSession(daemon.port, '127.0.0.1')

    operation = SetOperation(session)
    operation.addValueAsBoolean('/3311/0/5850', True)
    with pytest.raises(IpcError) as e:
        operation.perform(200)
    assert(e.value.error is AwaError.TIMEOUT)

    for value in [False, True, False, True]:
        operation = SetOperation(session)
        operation.addValueAsBoolean('/3311/0/5850', value)
        operation.perform(2000)
        assert(session.get(['/3311/0/5850'], 2000).containsPath('/3311/0/5850'))

    assert(daemon.model.paths['/3311/0/5850'] == 'True')
    session.close()
