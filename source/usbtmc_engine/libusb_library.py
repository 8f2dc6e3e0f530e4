"""Minimalistic ctypes-based libusb-1.0 binding, covering what a USBTMC host needs.

Only synchronous I/O is supported. Descriptors are exposed as the ctypes structures that libusb
fills in; they mirror the C declarations in libusb.h.
"""

import ctypes
import ctypes.util
import os
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import LibUsbLibraryNotFoundError

LIBUSB_ERROR_NOT_SUPPORTED = -12

# Alignment for structs used by libusb. The value 8 works on 64-bit Microsoft Windows.
C_STRUCT_ALIGNMENT = 8

u8 = ctypes.c_uint8
u16 = ctypes.c_uint16
c_int = ctypes.c_int
UBytePtr = ctypes.POINTER(ctypes.c_ubyte)


class LibUsbContext(ctypes.Structure):
    """Opaque libusb context."""


class LibUsbDevice(ctypes.Structure):
    """Opaque libusb device."""


class LibUsbDeviceHandle(ctypes.Structure):
    """Opaque handle of an opened libusb device."""


LibUsbContextPtr = ctypes.POINTER(LibUsbContext)
LibUsbDevicePtr = ctypes.POINTER(LibUsbDevice)
LibUsbDeviceHandlePtr = ctypes.POINTER(LibUsbDeviceHandle)

# Every standard descriptor starts with its length and type, and libusb appends unparsed extra bytes.
_DESCRIPTOR_PREFIX = [("bLength", u8), ("bDescriptorType", u8)]
_EXTRA_BYTES = [("extra", UBytePtr), ("extra_length", c_int)]


class LibUsbEndpointDescriptor(ctypes.Structure):
    _pack_ = C_STRUCT_ALIGNMENT
    _fields_ = _DESCRIPTOR_PREFIX + [
        ("bEndpointAddress", u8),
        ("bmAttributes", u8),
        ("wMaxPacketSize", u16),
        ("bInterval", u8),
        ("bRefresh", u8),
        ("bSynchAddress", u8)
    ] + _EXTRA_BYTES


class LibUsbInterfaceDescriptor(ctypes.Structure):
    """One alternate setting of an interface."""
    _pack_ = C_STRUCT_ALIGNMENT
    _fields_ = _DESCRIPTOR_PREFIX + [
        ("bInterfaceNumber", u8),
        ("bAlternateSetting", u8),
        ("bNumEndpoints", u8),
        ("bInterfaceClass", u8),
        ("bInterfaceSubClass", u8),
        ("bInterfaceProtocol", u8),
        ("iInterface", u8),
        ("endpoint", ctypes.POINTER(LibUsbEndpointDescriptor))
    ] + _EXTRA_BYTES


class LibUsbInterface(ctypes.Structure):
    """All alternate settings of an interface."""
    _pack_ = C_STRUCT_ALIGNMENT
    _fields_ = [("altsetting", ctypes.POINTER(LibUsbInterfaceDescriptor)), ("num_altsetting", c_int)]


class LibUsbConfigDescriptor(ctypes.Structure):
    _pack_ = C_STRUCT_ALIGNMENT
    _fields_ = _DESCRIPTOR_PREFIX + [
        ("wTotalLength", u16),
        ("bNumInterfaces", u8),
        ("bConfigurationValue", u8),
        ("iConfiguration", u8),
        ("bmAttributes", u8),
        ("MaxPower", u8),
        ("interface", ctypes.POINTER(LibUsbInterface))
    ] + _EXTRA_BYTES


class LibUsbDeviceDescriptor(ctypes.Structure):
    _pack_ = C_STRUCT_ALIGNMENT
    _fields_ = _DESCRIPTOR_PREFIX + [
        ("bcdUSB", u16),
        ("bDeviceClass", u8),
        ("bDeviceSubClass", u8),
        ("bDeviceProtocol", u8),
        ("bMaxPacketSize0", u8),
        ("idVendor", u16),
        ("idProduct", u16),
        ("bcdDevice", u16),
        ("iManufacturer", u8),
        ("iProduct", u8),
        ("iSerialNumber", u8),
        ("bNumConfigurations", u8)
    ]


LibUsbConfigDescriptorPtr = ctypes.POINTER(LibUsbConfigDescriptor)

# Function name -> (restype, argtypes).
_PROTOTYPES = {
    "libusb_init":                     (c_int, [ctypes.POINTER(LibUsbContextPtr)]),
    "libusb_exit":                     (None, [LibUsbContextPtr]),
    "libusb_error_name":               (ctypes.c_char_p, [c_int]),
    "libusb_get_device_list":          (ctypes.c_ssize_t, [LibUsbContextPtr, ctypes.POINTER(ctypes.POINTER(LibUsbDevicePtr))]),
    "libusb_free_device_list":         (None, [ctypes.POINTER(LibUsbDevicePtr), c_int]),
    "libusb_get_bus_number":           (u8, [LibUsbDevicePtr]),
    "libusb_get_device_address":       (u8, [LibUsbDevicePtr]),
    "libusb_get_device_descriptor":    (c_int, [LibUsbDevicePtr, ctypes.POINTER(LibUsbDeviceDescriptor)]),
    "libusb_get_config_descriptor":    (c_int, [LibUsbDevicePtr, u8, ctypes.POINTER(LibUsbConfigDescriptorPtr)]),
    "libusb_free_config_descriptor":   (None, [LibUsbConfigDescriptorPtr]),
    "libusb_open":                     (c_int, [LibUsbDevicePtr, ctypes.POINTER(LibUsbDeviceHandlePtr)]),
    "libusb_close":                    (None, [LibUsbDeviceHandlePtr]),
    "libusb_get_device":               (LibUsbDevicePtr, [LibUsbDeviceHandlePtr]),
    "libusb_set_configuration":        (c_int, [LibUsbDeviceHandlePtr, c_int]),
    "libusb_claim_interface":          (c_int, [LibUsbDeviceHandlePtr, c_int]),
    "libusb_release_interface":        (c_int, [LibUsbDeviceHandlePtr, c_int]),
    "libusb_set_interface_alt_setting": (c_int, [LibUsbDeviceHandlePtr, c_int, c_int]),
    "libusb_clear_halt":               (c_int, [LibUsbDeviceHandlePtr, ctypes.c_ubyte]),
    "libusb_kernel_driver_active":     (c_int, [LibUsbDeviceHandlePtr, c_int]),
    "libusb_detach_kernel_driver":     (c_int, [LibUsbDeviceHandlePtr, c_int]),
    "libusb_attach_kernel_driver":     (c_int, [LibUsbDeviceHandlePtr, c_int]),
    # handle, bmRequestType, bRequest, wValue, wIndex, data, wLength, timeout
    "libusb_control_transfer":         (c_int, [LibUsbDeviceHandlePtr, u8, u8, u16, u16, UBytePtr, u16, ctypes.c_uint]),
    # handle, endpoint, data, length, transferred, timeout
    "libusb_bulk_transfer":            (c_int, [LibUsbDeviceHandlePtr, ctypes.c_ubyte, UBytePtr, c_int,
                                                ctypes.POINTER(c_int), ctypes.c_uint]),
}


class LibUsbLibraryError(Exception):
    """Base class for errors reported by the LibUsbLibrary methods."""


class LibUsbLibraryFunctionCallError(LibUsbLibraryError):
    """A libusb function returned an error code."""
    def __init__(self, error_code: int, error_message: str):
        super().__init__(error_code, error_message)
        self.error_code = error_code
        self.error_message = error_message

    def __str__(self):
        return f"{self.error_message} ({self.error_code})"


class LibUsbLibraryMiscellaneousError(LibUsbLibraryError):
    """A LibUsbLibrary method failed without libusb reporting an error."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class LibUsbLibrary:
    """A dynamically loaded libusb-1.0 shared library."""

    def __init__(self, filename: str):
        # The Windows version of libusb uses the 'stdcall' calling convention.
        loader = ctypes.WinDLL if sys.platform == "win32" else ctypes.CDLL
        self._lib = loader(filename)

        for (name, (restype, argtypes)) in _PROTOTYPES.items():
            function = getattr(self._lib, name)
            function.restype = restype
            function.argtypes = argtypes

    def _check(self, result: int) -> int:
        """Raise the libusb error that a negative function result denotes; pass other results through."""
        if result < 0:
            raise LibUsbLibraryFunctionCallError(result, self.get_error_name(result))
        return result

    def get_error_name(self, error_code: int) -> str:
        return self._lib.libusb_error_name(error_code).decode('ascii')

    def init(self) -> LibUsbContextPtr:
        ctx = LibUsbContextPtr()
        self._check(self._lib.libusb_init(ctx))
        return ctx

    def exit(self, ctx: LibUsbContextPtr) -> None:
        self._lib.libusb_exit(ctx)

    @contextmanager
    def device_list(self, ctx: LibUsbContextPtr) -> Iterator[list[LibUsbDevicePtr]]:
        """Get the USB devices currently attached to the system.

        The devices are only valid inside the 'with' block: on leaving it, the list is freed and the
        device reference counts are decremented. A device opened inside the block keeps its own
        reference, so its handle stays usable.
        """
        devices = ctypes.POINTER(LibUsbDevicePtr)()
        count = self._check(self._lib.libusb_get_device_list(ctx, devices))
        try:
            yield [devices[index] for index in range(count)]
        finally:
            self._lib.libusb_free_device_list(devices, 1)

    def get_bus_number(self, device: LibUsbDevicePtr) -> int:
        return self._lib.libusb_get_bus_number(device)

    def get_device_address(self, device: LibUsbDevicePtr) -> int:
        return self._lib.libusb_get_device_address(device)

    def get_device_descriptor(self, device: LibUsbDevicePtr) -> LibUsbDeviceDescriptor:
        descriptor = LibUsbDeviceDescriptor()
        self._check(self._lib.libusb_get_device_descriptor(device, descriptor))
        return descriptor

    @contextmanager
    def config_descriptor(self, device: LibUsbDevicePtr, config_index: int) -> Iterator[LibUsbConfigDescriptor]:
        """Get a configuration descriptor by index; it is freed when the 'with' block is left."""
        descriptor = LibUsbConfigDescriptorPtr()
        self._check(self._lib.libusb_get_config_descriptor(device, config_index, descriptor))
        try:
            yield descriptor.contents
        finally:
            self._lib.libusb_free_config_descriptor(descriptor)

    def open(self, device: LibUsbDevicePtr) -> LibUsbDeviceHandlePtr:
        """Open a device for I/O. The handle holds a reference to the device until it is closed."""
        device_handle = LibUsbDeviceHandlePtr()
        self._check(self._lib.libusb_open(device, device_handle))
        return device_handle

    def close(self, device_handle: LibUsbDeviceHandlePtr) -> None:
        self._lib.libusb_close(device_handle)

    def get_device(self, device_handle: LibUsbDeviceHandlePtr) -> LibUsbDevicePtr:
        return self._lib.libusb_get_device(device_handle)

    def set_configuration(self, device_handle: LibUsbDeviceHandlePtr, configuration: int) -> None:
        self._check(self._lib.libusb_set_configuration(device_handle, configuration))

    def claim_interface(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int) -> None:
        """Take exclusive control of an interface."""
        self._check(self._lib.libusb_claim_interface(device_handle, interface_number))

    def release_interface(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int) -> None:
        """Give up exclusive control of an interface."""
        self._check(self._lib.libusb_release_interface(device_handle, interface_number))

    def set_interface_alt_setting(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int,
                                  setting_number: int) -> None:
        self._check(self._lib.libusb_set_interface_alt_setting(device_handle, interface_number, setting_number))

    def clear_halt(self, device_handle: LibUsbDeviceHandlePtr, endpoint: int) -> None:
        self._check(self._lib.libusb_clear_halt(device_handle, endpoint))

    def kernel_driver_active(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int) -> bool:
        result = self._lib.libusb_kernel_driver_active(device_handle, interface_number)
        if result == LIBUSB_ERROR_NOT_SUPPORTED:
            # Platforms without kernel drivers in the libusb sense (e.g. Windows).
            return False
        return self._check(result) == 1

    def detach_kernel_driver(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int) -> None:
        self._check(self._lib.libusb_detach_kernel_driver(device_handle, interface_number))

    def attach_kernel_driver(self, device_handle: LibUsbDeviceHandlePtr, interface_number: int) -> None:
        self._check(self._lib.libusb_attach_kernel_driver(device_handle, interface_number))

    def control_transfer(self, device_handle: LibUsbDeviceHandlePtr, request_type: int, request: int, value: int,
                         index: int, length: int, timeout: int) -> bytes:
        """Perform a device-to-host control transfer; return the bytes received (at most `length`)."""
        buffer = ctypes.create_string_buffer(length)
        received = self._check(self._lib.libusb_control_transfer(
            device_handle, request_type, request, value, index, ctypes.cast(buffer, UBytePtr), length, timeout))
        return buffer.raw[:received]

    def bulk_transfer_out(self, device_handle: LibUsbDeviceHandlePtr, endpoint: int, data: bytes, timeout: int) -> None:
        buffer = ctypes.create_string_buffer(bytes(data), len(data))
        transferred = c_int()
        self._check(self._lib.libusb_bulk_transfer(
            device_handle, endpoint, ctypes.cast(buffer, UBytePtr), len(data), transferred, timeout))
        if transferred.value != len(data):
            raise LibUsbLibraryMiscellaneousError(f"Short bulk-out transfer ({transferred.value} of {len(data)} bytes).")

    def bulk_transfer_in(self, device_handle: LibUsbDeviceHandlePtr, endpoint: int, max_size: int, timeout: int) -> bytes:
        buffer = ctypes.create_string_buffer(max_size)
        transferred = c_int()
        self._check(self._lib.libusb_bulk_transfer(
            device_handle, endpoint, ctypes.cast(buffer, UBytePtr), max_size, transferred, timeout))
        return buffer.raw[:transferred.value]


class LibUsbLibraryManager:
    """Owns a lazily loaded LibUsbLibrary and one libusb context obtained from it.

    A single instance is shared by all UsbTmcClient instances.
    """

    def __init__(self):
        self._libusb: Optional[LibUsbLibrary] = None
        self._ctx: Optional[LibUsbContextPtr] = None

    def __del__(self):
        if self._ctx is not None:
            self._libusb.exit(self._ctx)

    def get_libusb(self) -> LibUsbLibrary:
        if self._libusb is None:
            # LIBUSB_LIBRARY_PATH overrides the platform's library search.
            filename = os.environ.get("LIBUSB_LIBRARY_PATH") or ctypes.util.find_library("usb-1.0")
            if filename is None:
                raise LibUsbLibraryNotFoundError(
                    "Don't know where to find libusb. Set the LIBUSB_LIBRARY_PATH environment variable.")
            self._libusb = LibUsbLibrary(filename)
        return self._libusb

    def get_libusb_context(self) -> LibUsbContextPtr:
        if self._ctx is None:
            self._ctx = self.get_libusb().init()
        return self._ctx
