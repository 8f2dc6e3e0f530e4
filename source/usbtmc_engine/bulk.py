"""Device-dependent message I/O on the Bulk-OUT and Bulk-IN endpoints."""

import logging

from .constants import APPLICATION_BUFFER_SIZE, DEFAULT_TERM_CHAR, USBTMC_HEADER_SIZE, Direction
from .errors import BulkInHeaderError, IncorrectEndpointError
from .header import encode_dev_dep_msg_out, encode_request_dev_dep_msg_in, is_end_of_message
from .session import SessionContext
from .usbtmc_types import Capabilities, Endpoint

log = logging.getLogger(__name__)


def check_bulk_out_endpoint(endpoint: Endpoint) -> None:
    if not endpoint.is_bulk(Direction.OUT):
        raise IncorrectEndpointError(f"Endpoint 0x{endpoint.address:02x} is not a Bulk-OUT endpoint.")


def check_bulk_in_endpoint(endpoint: Endpoint) -> None:
    if not endpoint.is_bulk(Direction.IN):
        raise IncorrectEndpointError(f"Endpoint 0x{endpoint.address:02x} is not a Bulk-IN endpoint.")


def split_transfers(transaction: bytes, max_packet_size: int) -> list[bytes]:
    """Split a transaction (header + payload) into wire transfers.

    Each transfer holds at most `max_packet_size` bytes of the transaction, followed by 0..3
    zero-valued alignment bytes that bring its length to a multiple of 4.
    """
    transfers = []
    for offset in range(0, len(transaction), max_packet_size):
        transfer = transaction[offset:offset + max_packet_size]
        padding = bytes(-len(transfer) % 4)
        transfers.append(transfer + padding)
    return transfers


def write(session: SessionContext, payload: bytes, bulk_out_endpoint: Endpoint) -> list[int]:
    """Write a message to the Bulk-OUT endpoint.

    The message is sent as a sequence of DEV_DEP_MSG_OUT transactions of at most
    APPLICATION_BUFFER_SIZE payload bytes each; only the last one has its EOM bit set.
    Each transaction consumes one bTag. An empty payload is not sent at all.

    Returns the bTags of the transactions, in order. The bTag of the transaction in progress is
    also recorded in `session.last_bulk_out_btag`, so it is known even if a transfer fails.
    """

    check_bulk_out_endpoint(bulk_out_endpoint)

    btags = []

    for offset in range(0, len(payload), APPLICATION_BUFFER_SIZE):
        chunk = bytes(payload[offset:offset + APPLICATION_BUFFER_SIZE])
        end_of_message = (offset + len(chunk) == len(payload))

        btag = session.btag.next()
        btags.append(btag)
        session.last_bulk_out_btag = btag

        transaction = encode_dev_dep_msg_out(btag, len(chunk), end_of_message) + chunk

        log.debug("DEV_DEP_MSG_OUT: bTag %d, %d bytes, EOM=%s", btag, len(chunk), end_of_message)

        for transfer in split_transfers(transaction, bulk_out_endpoint.max_packet_size):
            # The timeout is read per transfer, so a change takes effect on the next transfer.
            timeout = session.timeout.milliseconds()
            with session.transport() as transport:
                transport.bulk_transfer_out(bulk_out_endpoint.address, transfer, timeout)

    return btags


def read(session: SessionContext, bulk_in_endpoint: Endpoint, bulk_out_endpoint: Endpoint,
         capabilities: Capabilities, term_char: int = DEFAULT_TERM_CHAR) -> bytes:
    """Read a complete device-dependent message from the Bulk-IN endpoint.

    A single REQUEST_DEV_DEP_MSG_IN header is built, and the request/response cycle is repeated
    with it until the device sets the EOM bit in a Bulk-IN header. The message returned is the
    concatenation of the received transfers with their headers removed. Alignment bytes that
    the device may have sent are not removed.

    The request bTag is recorded in `session.last_bulk_in_btag`, for use with abort_bulk_in.
    """

    check_bulk_out_endpoint(bulk_out_endpoint)
    check_bulk_in_endpoint(bulk_in_endpoint)

    # Only ask for a termination character if the device supports the feature.
    request_term_char = term_char if capabilities.supports_bulk_in_term_char else None

    btag = session.btag.next()
    session.last_bulk_in_btag = btag
    request = encode_request_dev_dep_msg_in(btag, bulk_in_endpoint.max_packet_size, request_term_char)

    max_transfer_size = bulk_in_endpoint.max_packet_size + USBTMC_HEADER_SIZE

    message = bytearray()

    while True:

        with session.transport() as transport:
            transport.bulk_transfer_out(bulk_out_endpoint.address, request, session.timeout.milliseconds())

        with session.transport() as transport:
            transfer = transport.bulk_transfer_in(bulk_in_endpoint.address, max_transfer_size, session.timeout.milliseconds())

        if len(transfer) < USBTMC_HEADER_SIZE:
            raise BulkInHeaderError(f"Bulk-in transfer is too short ({len(transfer)} bytes).")

        message.extend(transfer[USBTMC_HEADER_SIZE:])

        log.debug("DEV_DEP_MSG_IN: bTag %d, %d bytes received", btag, len(transfer) - USBTMC_HEADER_SIZE)

        if is_end_of_message(transfer):
            break

    return bytes(message)
