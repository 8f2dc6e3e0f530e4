"""Passive data types describing USBTMC devices, their endpoints, and their capabilities."""

from typing import NamedTuple, Optional

from .constants import Direction, TransferType


class DeviceId(NamedTuple):
    """USB device identifiers."""
    vendor_id: int
    product_id: int

    def __str__(self):
        return f"{self.vendor_id:04x}:{self.product_id:04x}"


class DeviceAddr(NamedTuple):
    """USB device address."""
    bus: int     # USB bus number.
    device: int  # USB device number on that bus.

    def __str__(self):
        return f"{self.bus:03d}/{self.device:03d}"


class DeviceInfo(NamedTuple):
    """Identity of an enumerated USBTMC device."""
    id: DeviceId
    address: DeviceAddr


class DeviceMode(NamedTuple):
    """The configuration, interface, and alternate setting that provide the USBTMC interface.

    Also records whether a kernel driver was detached from the interface, so control over the
    interface can be handed back to the operating system when we're done.
    """
    configuration_number: int
    interface_number: int
    setting_number: int
    has_kernel_driver: bool = False


class Endpoint(NamedTuple):
    """Properties of an endpoint."""
    address: int                  # bEndpointAddress, including the direction bit.
    max_packet_size: int          # wMaxPacketSize.
    transfer_type: TransferType   # For USBTMC, BULK or INTERRUPT.
    direction: Direction          # For USBTMC, IN or OUT.

    def is_bulk(self, direction: Direction) -> bool:
        """Check if this is a bulk endpoint with the given direction."""
        return self.transfer_type == TransferType.BULK and self.direction == direction


class UsbTmcEndpoints(NamedTuple):
    """The endpoints of a USBTMC interface."""
    bulk_out: Endpoint                     # Mandatory.
    bulk_in: Endpoint                      # Mandatory.
    interrupt_in: Optional[Endpoint] = None


class Capabilities(NamedTuple):
    """USBTMC interface capabilities, as reported by the GET_CAPABILITIES request."""
    bcd_version: int                        # bcdUSBTMC, e.g. 0x0100 for version 1.00.
    accepts_indicator_pulse_request: bool
    is_talk_only: bool                      # The interface only sends data to the Host.
    is_listen_only: bool                    # The interface only accepts data from the Host.
    supports_bulk_in_term_char: bool        # The interface can end a Bulk-IN transfer on a termination character.
