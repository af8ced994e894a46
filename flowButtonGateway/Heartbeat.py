# -*- coding: utf-8 -*-
import logging
import subprocess
import time

HEARTBEAT_SCRIPT = '/usr/bin/set_led.sh'

class HeartbeatLed(object):
    ''' Drives the gateway's status LED through an external script that accepts 1 (on) or 0 (off)

        Args:
            script (`str`): Path of the script
            runner (callable, optional): Runs the command and returns its exit status.  Default is `subprocess.call`

    '''
    _logger = logging.getLogger(__name__)

    def __init__(self, script=HEARTBEAT_SCRIPT, runner=subprocess.call):
        self._script = script
        self._runner = runner

    def set(self, status):
        try:
            rc = self._runner([self._script, '1' if status else '0'])
        except OSError as e:
            self._logger.warning('Setting heartbeat led failed. {0}'.format(e))
            return False
        if rc != 0:
            self._logger.warning('Setting heartbeat led failed.')
            return False
        return True

    def pulse(self, sleep=time.sleep, seconds=1):
        ''' Off, wait, on.  Used once per poll cycle as a liveness signal '''
        self.set(False)
        sleep(seconds)
        self.set(True)
