"""The USB transport used by the protocol engines: an opened libusb device handle.

The bulk and control modules only rely on the four transfer methods of LibUsbTransport. Any object
that provides them can stand in for a real device.
"""

from .libusb_library import LibUsbDeviceHandlePtr, LibUsbLibrary


class LibUsbTransport:
    """Transfers on an opened libusb device handle. All timeouts are in [ms]."""

    def __init__(self, libusb: LibUsbLibrary, device_handle: LibUsbDeviceHandlePtr):
        self._libusb = libusb
        self._device_handle = device_handle

    def control_transfer(self, request_type: int, request: int, value: int, index: int, length: int,
                         timeout: int) -> bytes:
        """Perform a device-to-host control transfer and return up to `length` response bytes."""
        return self._libusb.control_transfer(self._device_handle, request_type, request, value, index, length, timeout)

    def bulk_transfer_out(self, endpoint_address: int, data: bytes, timeout: int) -> None:
        """Perform a single Bulk-OUT transfer."""
        self._libusb.bulk_transfer_out(self._device_handle, endpoint_address, data, timeout)

    def bulk_transfer_in(self, endpoint_address: int, max_size: int, timeout: int) -> bytes:
        """Perform a single Bulk-IN transfer."""
        return self._libusb.bulk_transfer_in(self._device_handle, endpoint_address, max_size, timeout)

    def clear_halt(self, endpoint_address: int) -> None:
        """Clear the Halt condition of an endpoint."""
        self._libusb.clear_halt(self._device_handle, endpoint_address)
