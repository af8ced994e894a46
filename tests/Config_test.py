import pytest

from flowButtonGateway.Config import RetryPolicy, loadRegistrationConfig

from tests import simulator

CONFIG = '''URL = "https://a1b2c3.iot.us-east-1.amazonaws.com";
CustomerKey = "AKIAEXAMPLE";
CustomerSecret = "secret";
RememberMeToken = "token";
'''

@pytest.fixture
def configPath(tmp_path):
    return tmp_path / 'flow_access.cfg'

def test_read_config(configPath):
    configPath.write_text(CONFIG + 'DeviceName = "gateway-1";\n')
    sleep = simulator.sleepRecorder()
    config = loadRegistrationConfig(str(configPath), sleep=sleep)

    assert(config.url == 'https://a1b2c3.iot.us-east-1.amazonaws.com')
    assert(config.key == 'AKIAEXAMPLE')
    assert(config.secret == 'secret')
    assert(config.rememberMeToken == 'token')
    assert(config.deviceName == 'gateway-1')
    assert(config.rootCAPath == '/etc/lwm2m/root-CA.crt')
    assert(sleep.calls == [])

def test_missing_file_gives_up_after_five_attempts(configPath):
    sleep = simulator.sleepRecorder()
    assert(loadRegistrationConfig(str(configPath), sleep=sleep) is None)
    assert(sleep.calls == [1] * 5)

def test_file_written_before_last_attempt(configPath):
    def writeConfig(calls):
        if calls == 4:
            configPath.write_text(CONFIG)

    sleep = simulator.sleepRecorder(onSleep=writeConfig)
    config = loadRegistrationConfig(str(configPath), sleep=sleep)
    assert(config is not None and config.rememberMeToken == 'token')
    assert(len(sleep.calls) == 4)

def test_missing_key_is_not_retried(configPath):
    configPath.write_text('URL = "x";\nCustomerKey = "k";\nCustomerSecret = "s";\n')
    sleep = simulator.sleepRecorder()
    assert(loadRegistrationConfig(str(configPath), sleep=sleep) is None)
    assert(sleep.calls == [])

def test_non_string_value(configPath):
    configPath.write_text(CONFIG.replace('"token"', '42'))
    assert(loadRegistrationConfig(str(configPath), sleep=simulator.sleepRecorder()) is None)

def test_unparseable_file_is_retried(configPath):
    configPath.write_text('URL = ')
    sleep = simulator.sleepRecorder()
    assert(loadRegistrationConfig(str(configPath), policy=RetryPolicy(2, 0.5), sleep=sleep) is None)
    assert(sleep.calls == [0.5, 0.5])

def test_partly_written_file_is_retried(configPath):
    configPath.write_bytes(b'URL = "\xff\xfe";\nCustomerKey = "k";\n')
    sleep = simulator.sleepRecorder()
    assert(loadRegistrationConfig(str(configPath), policy=RetryPolicy(1, 0), sleep=sleep) is None)
    assert(sleep.calls == [0])

def test_partly_written_file_completed_later(configPath):
    configPath.write_bytes(b'URL = "https://a1b2c3.iot\xe2\x82')

    def writeConfig(calls):
        configPath.write_text(CONFIG)

    config = loadRegistrationConfig(str(configPath), sleep=simulator.sleepRecorder(onSleep=writeConfig))
    assert(config is not None and config.key == 'AKIAEXAMPLE')
