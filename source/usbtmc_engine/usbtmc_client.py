"""This module provides the UsbTmcClient class."""

import logging
from typing import Optional, Union

from . import bulk, control
from .client_options import UsbTmcClientOptions
from .device_filter import DeviceFilter, make_device_filter
from .discovery import detach_kernel_driver, find_and_open_device, get_endpoints, get_usbtmc_mode, list_devices
from .errors import InterfaceClosedError, ResponseDecodingError, TeardownError, UsbTmcGenericError
from .libusb_library import LibUsbLibraryError, LibUsbLibraryManager
from .session import BTag, SessionContext, Timeout
from .transport import LibUsbTransport
from .usbtmc_types import Capabilities, DeviceAddr, DeviceId, DeviceInfo, DeviceMode, UsbTmcEndpoints

log = logging.getLogger(__name__)

DeviceSelector = Optional[Union[DeviceFilter, DeviceId, DeviceAddr, DeviceInfo]]


class UsbTmcClient:
    """A client connected to the USBTMC interface of a USB device.

    Typical use:

        with UsbTmcClient.connect(DeviceId(0x0957, 0x5707)) as client:
            print(client.query("*IDN?"))

    Commands and queries on one client must not be interleaved between threads: a device
    expects every query to be followed by the read of its response.
    """

    # All UsbTmcClient instances will use the same managed instance of libusb and a libusb context.
    _usbtmc_libusb_manager = LibUsbLibraryManager()

    def __init__(self, device_selector: DeviceSelector = None, *, options: Optional[UsbTmcClientOptions] = None):

        self._device_filter = make_device_filter(device_selector)
        self._options = UsbTmcClientOptions() if options is None else options
        self._timeout = Timeout(self._options.timeout)

        self._libusb = None
        self._device_handle = None
        self._interface_claimed = False
        self._mode: Optional[DeviceMode] = None
        self._endpoints: Optional[UsbTmcEndpoints] = None
        self._capabilities: Optional[Capabilities] = None
        self._session: Optional[SessionContext] = None

    @classmethod
    def connect(cls, device_selector: DeviceSelector = None, *,
                options: Optional[UsbTmcClientOptions] = None) -> "UsbTmcClient":
        """Make a client for the first USBTMC device that matches the selector, and open it."""
        client = cls(device_selector, options=options)
        client.open()
        return client

    @staticmethod
    def devices() -> list[DeviceInfo]:
        """List the USBTMC devices attached to the system."""
        libusb = UsbTmcClient._usbtmc_libusb_manager.get_libusb()
        ctx = UsbTmcClient._usbtmc_libusb_manager.get_libusb_context()
        return list_devices(libusb, ctx)

    def __enter__(self):
        if not self.is_open:
            self.open()
        return self

    def __exit__(self, _exception_type, _exception_value, _exception_traceback):
        self.close()

    def __del__(self):
        if getattr(self, "_device_handle", None) is not None:
            log.warning("UsbTmcClient was not closed before being discarded; closing it now.")
            self.close()

    @property
    def is_open(self) -> bool:
        return self._device_handle is not None

    def open(self) -> None:
        """Find and open the device, claim its USBTMC interface, and prepare it for use.

        If anything goes wrong after the device was opened, the device is closed again before the
        exception propagates.
        """

        if self.is_open:
            raise UsbTmcGenericError("The interface is already open.")

        libusb = UsbTmcClient._usbtmc_libusb_manager.get_libusb()
        ctx = UsbTmcClient._usbtmc_libusb_manager.get_libusb_context()

        device_handle = find_and_open_device(libusb, ctx, self._device_filter)

        # Declare the device open, but prepare to close it when a subsequent initialization operation fails.

        self._libusb = libusb
        self._device_handle = device_handle

        try:
            device = libusb.get_device(device_handle)

            mode = get_usbtmc_mode(libusb, device)
            self._mode = detach_kernel_driver(libusb, device_handle, mode)
            self._endpoints = get_endpoints(libusb, device, self._mode)

            libusb.set_configuration(device_handle, self._mode.configuration_number)

            # Claim the interface. This needs to happen *after* the set-configuration operation.
            libusb.claim_interface(device_handle, self._mode.interface_number)
            self._interface_claimed = True

            libusb.set_interface_alt_setting(device_handle, self._mode.interface_number, self._mode.setting_number)

            self._session = SessionContext(LibUsbTransport(libusb, device_handle), BTag(), self._timeout)

            self._capabilities = control.get_capabilities(self._session, self._mode.interface_number)

            if self._options.clear_at_connect:
                self.clear()

        except Exception:
            # If any exception happened during the first uses of the newly opened device,
            # we immediately close the device and re-raise the exception.
            self.close()
            raise

        log.info("USBTMC interface %d open (%s).", self._mode.interface_number, self._capabilities)

    def close(self) -> None:
        """Release the interface, hand it back to its kernel driver if we detached one, and close the device.

        Closing a client that is not open does nothing, so the teardown runs exactly once.
        A failing teardown is fatal: it raises a TeardownError.
        """

        if self._device_handle is None:
            return

        libusb = self._libusb
        device_handle = self._device_handle
        mode = self._mode
        interface_claimed = self._interface_claimed

        # Set all device-specific fields to None. They will need to be re-initialized when the device is reopened.
        self._libusb = None
        self._device_handle = None
        self._interface_claimed = False
        self._mode = None
        self._endpoints = None
        self._capabilities = None
        self._session = None

        try:
            # The kernel driver can only be re-attached after the interface has been released.
            if interface_claimed:
                libusb.release_interface(device_handle, mode.interface_number)
            if mode is not None and mode.has_kernel_driver:
                libusb.attach_kernel_driver(device_handle, mode.interface_number)
        except LibUsbLibraryError as exception:
            log.critical("Unable to hand the USBTMC interface back to the operating system: %s", exception)
            raise TeardownError(f"Teardown of the USBTMC interface failed: {exception}") from exception
        finally:
            libusb.close(device_handle)

        log.info("USBTMC interface closed.")

    def _require_session(self) -> SessionContext:
        if self._session is None:
            raise InterfaceClosedError("The interface is not open.")
        return self._session

    @property
    def timeout(self) -> float:
        """The transfer timeout, in [s]."""
        return self._timeout.seconds

    def set_timeout(self, seconds: float) -> None:
        """Set a new transfer timeout, in [s]. It applies from the next transfer onward."""
        self._timeout.seconds = seconds

    @property
    def mode(self) -> Optional[DeviceMode]:
        return self._mode

    @property
    def endpoints(self) -> Optional[UsbTmcEndpoints]:
        return self._endpoints

    @property
    def capabilities(self) -> Optional[Capabilities]:
        """The interface capabilities, as read when the device was opened."""
        return self._capabilities

    def command(self, command: Union[str, bytes], encoding: str = 'ascii') -> list[int]:
        """Send a command to the device; return the bTags of the DEV_DEP_MSG_OUT transactions that carried it."""
        session = self._require_session()

        if isinstance(command, str):
            command = command.encode(encoding)

        return bulk.write(session, command, self._endpoints.bulk_out)

    def query_raw(self, command: Union[str, bytes], encoding: str = 'ascii') -> bytes:
        """Send a command to the device and return its response as bytes."""
        self.command(command, encoding)

        return bulk.read(self._require_session(), self._endpoints.bulk_in, self._endpoints.bulk_out,
                         self._capabilities, self._options.term_char)

    def query(self, command: Union[str, bytes], encoding: str = 'ascii') -> str:
        """Send a command to the device and return its response as a string, without surrounding whitespace.

        The response is decoded as UTF-8.
        """
        response = self.query_raw(command, encoding)
        try:
            return response.decode('utf-8').strip()
        except UnicodeDecodeError as exception:
            raise ResponseDecodingError(f"Response is not valid UTF-8: {exception}") from exception

    def read_status_byte(self) -> int:
        """Read the device status byte."""
        return control.read_status_byte(self._require_session(), self._mode.interface_number)

    def indicator_pulse(self) -> None:
        """Ask the device to show its activity indicator."""
        control.indicator_pulse(self._require_session(), self._mode.interface_number)

    def clear(self) -> None:
        """Clear the interface buffers, then clear the halt condition of both bulk endpoints.

        No command or query may be in progress.
        """
        session = self._require_session()
        control.clear_buffers(session, self._mode.interface_number, self._options.poll_policy())
        control.clear_feature(session, self._endpoints.bulk_out)
        control.clear_feature(session, self._endpoints.bulk_in)

    @property
    def last_bulk_out_btag(self) -> Optional[int]:
        """The bTag of the most recent DEV_DEP_MSG_OUT transaction, or None if nothing was sent yet."""
        return None if self._session is None else self._session.last_bulk_out_btag

    @property
    def last_bulk_in_btag(self) -> Optional[int]:
        """The bTag of the most recent REQUEST_DEV_DEP_MSG_IN transaction, or None if nothing was read yet."""
        return None if self._session is None else self._session.last_bulk_in_btag

    def abort_bulk_out(self, transfer_btag: Optional[int] = None) -> int:
        """Abort a Bulk-OUT transfer; return the number of bytes the device kept.

        By default, the most recent DEV_DEP_MSG_OUT transaction is aborted.
        """
        session = self._require_session()
        if transfer_btag is None:
            transfer_btag = self._last_btag(session.last_bulk_out_btag, "Bulk-OUT")
        return control.abort_bulk_out(session, self._endpoints.bulk_out, transfer_btag, self._options.poll_policy())

    def abort_bulk_in(self, transfer_btag: Optional[int] = None) -> int:
        """Abort a Bulk-IN transfer; return the number of bytes the device had sent.

        By default, the transfer requested by the most recent REQUEST_DEV_DEP_MSG_IN transaction is aborted.
        """
        session = self._require_session()
        if transfer_btag is None:
            transfer_btag = self._last_btag(session.last_bulk_in_btag, "Bulk-IN")
        return control.abort_bulk_in(session, self._endpoints.bulk_in, transfer_btag, self._options.poll_policy())

    @staticmethod
    def _last_btag(btag: Optional[int], endpoint_name: str) -> int:
        if btag is None:
            raise UsbTmcGenericError(f"No {endpoint_name} transfer to abort.")
        return btag
