"""Exceptions raised by the usbtmc_engine package.

Errors reported by libusb itself are not wrapped; they surface as LibUsbLibraryError instances
(see the libusb_library module), so callers can tell transport failures apart from protocol failures.
"""

from typing import Optional

from .constants import ControlRequest, ControlStatus


class UsbTmcError(Exception):
    """Base class for all errors that are raised at the USBTMC protocol level."""


class UsbTmcGenericError(UsbTmcError):
    """A generic error occurred at the USBTMC protocol level."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return f"{self.__class__.__name__}(message={self.message!r})"


class IncorrectEndpointError(UsbTmcGenericError):
    """An endpoint was used in a role that its direction or transfer type doesn't allow."""


class BulkInHeaderError(UsbTmcGenericError):
    """A Bulk-IN transfer was received that is too short to hold a USBTMC header."""


class ResponseDecodingError(UsbTmcGenericError):
    """A response could not be decoded as text."""


class InterfaceClosedError(UsbTmcGenericError):
    """An operation was attempted on a client that has been closed."""


class TeardownError(UsbTmcGenericError):
    """Releasing the interface or re-attaching the kernel driver failed.

    This leaves the operating system's view of the device in an inconsistent state.
    """


class LibUsbLibraryNotFoundError(UsbTmcGenericError):
    """The libusb-1.0 shared library could not be located."""


# Discovery errors.

class DeviceNotFoundError(UsbTmcGenericError):
    """No USBTMC device matching the filter could be opened."""


class DeviceIncompatibleError(UsbTmcGenericError):
    """The device doesn't have a USBTMC interface."""


class ConfigurationNotFoundError(UsbTmcGenericError):
    """The device has no configuration with the requested number."""


class InterfaceNotFoundError(UsbTmcGenericError):
    """The USBTMC interface is not present in the selected configuration."""


class InterfaceSettingNotFoundError(UsbTmcGenericError):
    """The USBTMC alternate setting is not present in the selected interface."""


class BulkOutEndpointNotFoundError(UsbTmcGenericError):
    """The USBTMC interface lacks the mandatory Bulk-OUT endpoint."""


class BulkInEndpointNotFoundError(UsbTmcGenericError):
    """The USBTMC interface lacks the mandatory Bulk-IN endpoint."""


# Device status errors.

class UsbTmcStatusError(UsbTmcError):
    """A control request was answered with a USBTMC_status that ends the request unsuccessfully."""
    def __init__(self, request: ControlRequest, status: Optional[int]):
        super().__init__(request, status)
        self.request = request
        self.status = status

    def __str__(self):
        status = "None" if self.status is None else ControlStatus.describe(self.status)
        return f"{self.__class__.__name__}(request={self.request}, status={status})"


class StatusFailureError(UsbTmcStatusError):
    """The device reported STATUS_FAILED."""


class StatusNoTransferInProgressError(UsbTmcStatusError):
    """The device reported STATUS_TRANSFER_NOT_IN_PROGRESS in response to an abort request."""


class StatusUnexpectedFailureError(UsbTmcStatusError):
    """The device reported a status that is not acceptable at this point of the request sequence."""


class BulkInFifoNotEmptyError(UsbTmcStatusError):
    """The device reported STATUS_PENDING while its Bulk-IN FIFO still holds data."""


class PollLimitError(UsbTmcStatusError):
    """The device was still reporting STATUS_PENDING when the poll limit was reached."""
