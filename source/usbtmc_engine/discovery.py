"""Finding USBTMC devices and the configuration, interface, and endpoints that provide their USBTMC interface."""

import logging

from .constants import USBTMC_CLASS_CODE, USBTMC_SUBCLASS_CODE, Direction, TransferType
from .device_filter import DeviceFilter
from .errors import (BulkInEndpointNotFoundError, BulkOutEndpointNotFoundError, ConfigurationNotFoundError,
                     DeviceIncompatibleError, DeviceNotFoundError, InterfaceNotFoundError,
                     InterfaceSettingNotFoundError)
from .libusb_library import (LibUsbConfigDescriptor, LibUsbContextPtr, LibUsbDeviceHandlePtr, LibUsbDevicePtr,
                             LibUsbInterfaceDescriptor, LibUsbLibrary, LibUsbLibraryFunctionCallError)
from .usbtmc_types import DeviceAddr, DeviceId, DeviceInfo, DeviceMode, Endpoint, UsbTmcEndpoints

log = logging.getLogger(__name__)


def _is_usbtmc_altsetting(altsetting: LibUsbInterfaceDescriptor) -> bool:
    return (altsetting.bInterfaceClass == USBTMC_CLASS_CODE) and (altsetting.bInterfaceSubClass == USBTMC_SUBCLASS_CODE)


def _find_usbtmc_modes(libusb: LibUsbLibrary, device: LibUsbDevicePtr) -> list[DeviceMode]:
    """Walk all configurations of a device, and collect the interface alternate settings that implement USBTMC."""

    modes = []

    device_descriptor = libusb.get_device_descriptor(device)

    for config_index in range(device_descriptor.bNumConfigurations):
        with libusb.config_descriptor(device, config_index) as config_descriptor:
            for interface_index in range(config_descriptor.bNumInterfaces):
                interface = config_descriptor.interface[interface_index]
                for altsetting_index in range(interface.num_altsetting):
                    altsetting = interface.altsetting[altsetting_index]
                    if _is_usbtmc_altsetting(altsetting):
                        modes.append(DeviceMode(
                            configuration_number=config_descriptor.bConfigurationValue,
                            interface_number=altsetting.bInterfaceNumber,
                            setting_number=altsetting.bAlternateSetting
                        ))

    return modes


def _get_device_info(libusb: LibUsbLibrary, device: LibUsbDevicePtr) -> DeviceInfo:
    device_descriptor = libusb.get_device_descriptor(device)
    return DeviceInfo(
        DeviceId(device_descriptor.idVendor, device_descriptor.idProduct),
        DeviceAddr(libusb.get_bus_number(device), libusb.get_device_address(device))
    )


def list_devices(libusb: LibUsbLibrary, ctx: LibUsbContextPtr) -> list[DeviceInfo]:
    """List all attached devices that have a USBTMC interface."""

    device_infos = []

    with libusb.device_list(ctx) as devices:
        for device in devices:
            try:
                if _find_usbtmc_modes(libusb, device):
                    device_infos.append(_get_device_info(libusb, device))
            except LibUsbLibraryFunctionCallError as exception:
                # Devices whose descriptors cannot be read are not USBTMC devices as far as we're concerned.
                log.debug("Skipping device: %s", exception)

    return device_infos


def find_and_open_device(libusb: LibUsbLibrary, ctx: LibUsbContextPtr,
                         device_filter: DeviceFilter) -> LibUsbDeviceHandlePtr:
    """Open the first USBTMC device that matches the filter and that can actually be opened."""

    with libusb.device_list(ctx) as devices:
        for device in devices:
            try:
                if not _find_usbtmc_modes(libusb, device):
                    continue
                device_info = _get_device_info(libusb, device)
            except LibUsbLibraryFunctionCallError as exception:
                log.debug("Skipping device: %s", exception)
                continue

            if not device_filter.matches(device_info):
                continue

            try:
                device_handle = libusb.open(device)
            except LibUsbLibraryFunctionCallError as exception:
                # Cannot open the device (e.g. insufficient permissions) -- reject.
                log.debug("Cannot open USBTMC device %s at %s: %s", device_info.id, device_info.address, exception)
                continue

            log.info("Opened USBTMC device %s at %s.", device_info.id, device_info.address)
            return device_handle

    raise DeviceNotFoundError(f"No USBTMC device matching {device_filter!r} found."
                              " Make sure the device is connected and user permissions allow I/O access to the device.")


def get_usbtmc_mode(libusb: LibUsbLibrary, device: LibUsbDevicePtr) -> DeviceMode:
    """Get the first configuration, interface, and alternate setting that implement USBTMC."""

    modes = _find_usbtmc_modes(libusb, device)
    if not modes:
        raise DeviceIncompatibleError("The device doesn't have a USBTMC interface.")

    return modes[0]


def detach_kernel_driver(libusb: LibUsbLibrary, device_handle: LibUsbDeviceHandlePtr, mode: DeviceMode) -> DeviceMode:
    """Detach the kernel driver from the USBTMC interface, if one is active.

    The returned mode records whether a driver was detached, so it can be re-attached at teardown.
    """

    if not libusb.kernel_driver_active(device_handle, mode.interface_number):
        return mode._replace(has_kernel_driver=False)

    libusb.detach_kernel_driver(device_handle, mode.interface_number)
    log.info("Detached kernel driver from interface %d.", mode.interface_number)

    return mode._replace(has_kernel_driver=True)


def _collect_endpoints(config_descriptor: LibUsbConfigDescriptor, mode: DeviceMode) -> list[Endpoint]:

    for interface_index in range(config_descriptor.bNumInterfaces):
        interface = config_descriptor.interface[interface_index]
        if interface.num_altsetting == 0 or interface.altsetting[0].bInterfaceNumber != mode.interface_number:
            continue

        for altsetting_index in range(interface.num_altsetting):
            altsetting = interface.altsetting[altsetting_index]
            if altsetting.bAlternateSetting != mode.setting_number:
                continue

            endpoints = []
            for endpoint_index in range(altsetting.bNumEndpoints):
                endpoint = altsetting.endpoint[endpoint_index]
                endpoints.append(Endpoint(
                    address=endpoint.bEndpointAddress,
                    max_packet_size=endpoint.wMaxPacketSize,
                    transfer_type=TransferType(endpoint.bmAttributes & 0x03),
                    direction=Direction(endpoint.bEndpointAddress & 0x80)
                ))
            return endpoints

        raise InterfaceSettingNotFoundError(
            f"Interface {mode.interface_number} has no alternate setting {mode.setting_number}.")

    raise InterfaceNotFoundError(
        f"Configuration {mode.configuration_number} has no interface {mode.interface_number}.")


def get_endpoints(libusb: LibUsbLibrary, device: LibUsbDevicePtr, mode: DeviceMode) -> UsbTmcEndpoints:
    """Get the Bulk-OUT, Bulk-IN, and (optional) Interrupt-IN endpoints of the USBTMC interface."""

    device_descriptor = libusb.get_device_descriptor(device)

    endpoints = None
    for config_index in range(device_descriptor.bNumConfigurations):
        with libusb.config_descriptor(device, config_index) as config_descriptor:
            if config_descriptor.bConfigurationValue == mode.configuration_number:
                endpoints = _collect_endpoints(config_descriptor, mode)
                break

    if endpoints is None:
        raise ConfigurationNotFoundError(f"The device has no configuration {mode.configuration_number}.")

    def first(transfer_type: TransferType, direction: Direction):
        return next((endpoint for endpoint in endpoints
                     if endpoint.transfer_type == transfer_type and endpoint.direction == direction), None)

    bulk_out = first(TransferType.BULK, Direction.OUT)
    if bulk_out is None:
        raise BulkOutEndpointNotFoundError("The USBTMC interface has no Bulk-OUT endpoint.")

    bulk_in = first(TransferType.BULK, Direction.IN)
    if bulk_in is None:
        raise BulkInEndpointNotFoundError("The USBTMC interface has no Bulk-IN endpoint.")

    return UsbTmcEndpoints(bulk_out, bulk_in, first(TransferType.INTERRUPT, Direction.IN))
