"""The usbtmc_engine package implements the USBTMC protocol for talking to test and measurement instruments over USB.

The package covers the USBTMC wire protocol as described in [1]:

* Device-dependent messages on the Bulk-OUT and Bulk-IN endpoints, including the segmentation of long
  messages into multiple transactions and transfers (the bulk module).
* The class-specific control requests: GET_CAPABILITIES, INDICATOR_PULSE, the INITIATE_CLEAR /
  CHECK_CLEAR_STATUS sequence, and the ABORT_BULK_OUT and ABORT_BULK_IN sequences (the control module).
* The READ_STATUS_BYTE request of the USB488 sub-protocol [2]. Other USB488 features (TRIGGER,
  REN_CONTROL, GO_TO_LOCAL, LOCAL_LOCKOUT, service requests) are not supported.

USB I/O is done through libusb-1.0, loaded with ctypes. Set the LIBUSB_LIBRARY_PATH environment variable
if the library cannot be found automatically.

[1] Universal Serial Bus Test and Measurement Class Specification (USBTMC), Revision 1.0, April 14, 2003
[2] Universal Serial Bus Test and Measurement Class, Subclass USB488 Specification (USBTMC-USB488), Revision 1.0, April 14, 2003

The UsbTmcClient class and the types needed to select a device are imported here to make them
available for import directly from the usbtmc_engine package.
"""

from .client_options import UsbTmcClientOptions
from .device_filter import AnyDevice, DeviceAddrFilter, DeviceFilter, DeviceIdFilter, DeviceInfoFilter
from .usbtmc_client import UsbTmcClient
from .usbtmc_types import Capabilities, DeviceAddr, DeviceId, DeviceInfo
