from flowButtonGateway.Heartbeat import HeartbeatLed

from tests import simulator

class runner(object):
    def __init__(self, rc=0, error=None):
        self.commands = []
        self._rc = rc
        self._error = error

    def __call__(self, command):
        self.commands.append(command)
        if self._error:
            raise self._error
        return self._rc

def test_set():
    r = runner()
    led = HeartbeatLed('/usr/bin/set_led.sh', runner=r)
    assert(led.set(True))
    assert(led.set(False))
    assert(r.commands == [['/usr/bin/set_led.sh', '1'], ['/usr/bin/set_led.sh', '0']])

def test_failures_are_not_fatal():
    assert(HeartbeatLed(runner=runner(rc=1)).set(True) is False)
    assert(HeartbeatLed(runner=runner(error=FileNotFoundError('set_led.sh'))).set(True) is False)

def test_pulse():
    r = runner()
    sleep = simulator.sleepRecorder()
    HeartbeatLed('led.sh', runner=r).pulse(sleep)
    assert(r.commands == [['led.sh', '0'], ['led.sh', '1']])
    assert(sleep.calls == [1])
