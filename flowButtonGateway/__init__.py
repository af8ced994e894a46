"""**A button to LED gateway for constrained LWM2M devices.**

.. module:: flowButtonGateway

flowButtonGateway runs on an IoT gateway that hosts an LWM2M client daemon and an LWM2M server daemon.  Two constrained devices register with the server: one exposes a button counter (object 3200, resource 5501) and the other an LED (object 3311, resource 5850).  The gateway waits until it has been provisioned, defines both objects on the client and the server, then polls the button once a second.  Whenever the parity of the counter changes the LED is switched (odd is on, even is off) on the remote device and on the gateway's own client, and the user that owns the gateway is sent a message through the cloud.

The cloud side is optional.  If registration fails the gateway keeps mirroring the button without sending messages.

"""

from flowButtonGateway.Gateway import Gateway, GatewayContext
from flowButtonGateway.Cloud import FlowClient
