"""Protocol constants of the USBTMC standard, and the handful of values this package picks for itself."""

from .better_int_enum import BetterIntEnum

USBTMC_CLASS_CODE = 0xfe     # bInterfaceClass of a USBTMC interface (Application-Class).
USBTMC_SUBCLASS_CODE = 0x03  # bInterfaceSubClass of a USBTMC interface.

USBTMC_HEADER_SIZE = 12          # All Bulk-In and Bulk-Out transfers start with a 12-byte header describing the transfer.
APPLICATION_BUFFER_SIZE = 8192   # Maximum payload of a single DEV_DEP_MSG_OUT transaction.
DEFAULT_TERM_CHAR = 0x0a         # '\n', the NI-VISA default termination character.
DEFAULT_TIMEOUT = 2.0            # Default transfer timeout, in [s].

GET_CAPABILITIES_RESPONSE_SIZE = 0x18


class ControlRequest(BetterIntEnum):
    """Control endpoint requests (bRequest values) of the USBTMC protocol."""
    INITIATE_ABORT_BULK_OUT     = 1
    CHECK_ABORT_BULK_OUT_STATUS = 2
    INITIATE_ABORT_BULK_IN      = 3
    CHECK_ABORT_BULK_IN_STATUS  = 4
    INITIATE_CLEAR              = 5
    CHECK_CLEAR_STATUS          = 6
    GET_CAPABILITIES            = 7
    INDICATOR_PULSE             = 64
    # The only USB488 sub-protocol request we support:
    READ_STATUS_BYTE            = 128


class ControlStatus(BetterIntEnum):
    """USBTMC_status values returned in the first byte of a control request response."""
    SUCCESS                  = 0x01
    PENDING                  = 0x02
    FAILED                   = 0x80
    TRANSFER_NOT_IN_PROGRESS = 0x81
    SPLIT_NOT_IN_PROGRESS    = 0x82
    SPLIT_IN_PROGRESS        = 0x83


class BulkMessageID(BetterIntEnum):
    """Bulk-in and bulk-out endpoint message IDs (MsgID, byte 0 of the bulk header)."""
    DEV_DEP_MSG_OUT                = 1
    REQUEST_DEV_DEP_MSG_IN         = 2
    DEV_DEP_MSG_IN                 = 2
    VENDOR_SPECIFIC_MSG_OUT        = 126
    REQUEST_VENDOR_SPECIFIC_MSG_IN = 127
    VENDOR_SPECIFIC_MSG_IN         = 127


class Direction(BetterIntEnum):
    """Endpoint direction, as encoded in bit 7 of bEndpointAddress and bmRequestType."""
    OUT = 0x00
    IN  = 0x80


class TransferType(BetterIntEnum):
    """Endpoint transfer type, as encoded in bits 1..0 of the endpoint's bmAttributes."""
    CONTROL     = 0
    ISOCHRONOUS = 1
    BULK        = 2
    INTERRUPT   = 3


class RequestKind(BetterIntEnum):
    """Request type, bits 6..5 of bmRequestType."""
    STANDARD = 0x00
    CLASS    = 0x20
    VENDOR   = 0x40


class Recipient(BetterIntEnum):
    """Request recipient, bits 4..0 of bmRequestType."""
    DEVICE    = 0x00
    INTERFACE = 0x01
    ENDPOINT  = 0x02
    OTHER     = 0x03


def make_request_type(direction: Direction, kind: RequestKind, recipient: Recipient) -> int:
    """Combine direction, request kind, and recipient into a bmRequestType octet."""
    return direction | kind | recipient
