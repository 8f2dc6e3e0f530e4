"""Encoding and decoding of the 12-byte header that starts every USBTMC Bulk-OUT and Bulk-IN transfer.

    offset  field
    ------  -------------------------------------------------------------
      0     MsgID
      1     bTag (1..255)
      2     bTagInverse (bitwise complement of bTag)
      3     reserved (0x00)
     4..7   TransferSize / RequestedSize (unsigned 32-bit, little-endian)
      8     bmTransferAttributes
      9     TermChar (only meaningful if bit 1 of bmTransferAttributes is set)
    10..11  reserved (0x00)
"""

import struct
from typing import Optional

from .constants import BulkMessageID, USBTMC_HEADER_SIZE

EOM_ATTRIBUTE = 0x01                # bmTransferAttributes.D0 of DEV_DEP_MSG_OUT: last transfer of the message.
TERM_CHAR_ENABLED_ATTRIBUTE = 0x02  # bmTransferAttributes.D1 of REQUEST_DEV_DEP_MSG_IN: TermChar is valid.

_HEADER_FORMAT = "<BBBxLBB2x"

assert struct.calcsize(_HEADER_FORMAT) == USBTMC_HEADER_SIZE


def _encode(message_id: BulkMessageID, btag: int, size: int, attributes: int = 0, term_char: int = 0) -> bytes:
    if not 1 <= btag <= 255:
        raise ValueError(f"Bad bTag value: {btag} (expected 1 <= bTag <= 255).")
    if not 0 <= size <= 0xffffffff:
        raise ValueError(f"Bad transfer size: {size}.")
    return struct.pack(_HEADER_FORMAT, message_id, btag, btag ^ 0xff, size, attributes, term_char)


def encode_dev_dep_msg_out(btag: int, transfer_size: int, end_of_message: bool) -> bytes:
    """Make the header of a DEV_DEP_MSG_OUT transaction carrying `transfer_size` message bytes."""
    attributes = EOM_ATTRIBUTE if end_of_message else 0x00
    return _encode(BulkMessageID.DEV_DEP_MSG_OUT, btag, transfer_size, attributes)


def encode_request_dev_dep_msg_in(btag: int, requested_size: int, term_char: Optional[int] = None) -> bytes:
    """Make a REQUEST_DEV_DEP_MSG_IN header.

    If `term_char` is given, the device is asked to end the Bulk-IN transfer when it sends that character.
    """
    if term_char is None:
        return _encode(BulkMessageID.REQUEST_DEV_DEP_MSG_IN, btag, requested_size)
    return _encode(BulkMessageID.REQUEST_DEV_DEP_MSG_IN, btag, requested_size, TERM_CHAR_ENABLED_ATTRIBUTE, term_char)


def encode_vendor_specific_out(btag: int, transfer_size: int) -> bytes:
    """Make the header of a VENDOR_SPECIFIC_OUT transaction."""
    return _encode(BulkMessageID.VENDOR_SPECIFIC_MSG_OUT, btag, transfer_size)


def encode_request_vendor_specific_in(btag: int, requested_size: int) -> bytes:
    """Make a REQUEST_VENDOR_SPECIFIC_IN header."""
    return _encode(BulkMessageID.REQUEST_VENDOR_SPECIFIC_MSG_IN, btag, requested_size)


def is_end_of_message(header: bytes) -> bool:
    """Check the EOM bit of a received Bulk-IN header."""
    return (header[8] & EOM_ATTRIBUTE) != 0
