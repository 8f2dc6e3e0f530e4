"""USBTMC class-specific requests on the control endpoint.

The clear and abort requests are split transactions: an INITIATE_* request starts the operation
in the device, after which the Host polls the matching CHECK_*_STATUS request until the device
stops reporting STATUS_PENDING.

The request sequences are described in section 4.2.1 of the USBTMC specification; the
READ_STATUS_BYTE request in section 4.3.1 of the USBTMC-USB488 sub-protocol specification.
"""

import itertools
import logging
import struct
import time
from typing import NamedTuple, Optional

from .bulk import check_bulk_in_endpoint, check_bulk_out_endpoint
from .constants import (ControlRequest, ControlStatus, Direction, GET_CAPABILITIES_RESPONSE_SIZE, Recipient,
                        RequestKind, make_request_type)
from .errors import (BulkInFifoNotEmptyError, PollLimitError, StatusFailureError, StatusNoTransferInProgressError,
                     StatusUnexpectedFailureError)
from .session import SessionContext
from .usbtmc_types import Capabilities, Endpoint

log = logging.getLogger(__name__)


class PollPolicy(NamedTuple):
    """How to poll a CHECK_*_STATUS request while the device reports STATUS_PENDING.

    The defaults poll back-to-back and without limit; each poll is bounded only by the transfer timeout.
    """
    interval: float = 0.0             # Pause between polls, in [s].
    max_polls: Optional[int] = None   # Give up with a PollLimitError after this many polls.


def _control_in(session: SessionContext, recipient: Recipient, request: ControlRequest,
                value: int, index: int, length: int) -> bytes:
    """Perform a class-specific device-to-host control request, returning exactly `length` bytes.

    A response shorter than `length` is extended with zero bytes.
    """
    request_type = make_request_type(Direction.IN, RequestKind.CLASS, recipient)
    timeout = session.timeout.milliseconds()
    with session.transport() as transport:
        response = transport.control_transfer(request_type, request, value, index, length, timeout)
    return bytes(response[:length]).ljust(length, b"\x00")


def _raise_status_error(request: ControlRequest, status: int):
    match status:
        case ControlStatus.FAILED:
            raise StatusFailureError(request, status)
        case ControlStatus.TRANSFER_NOT_IN_PROGRESS:
            raise StatusNoTransferInProgressError(request, status)
        case _:
            raise StatusUnexpectedFailureError(request, status)


def _bulk_in_fifo_is_empty(response: bytes) -> bool:
    # Bit 0 of the second response byte is set when the device has no more Bulk-IN data queued.
    return (response[1] & 0x01) != 0


def _poll_status(session: SessionContext, recipient: Recipient, request: ControlRequest, index: int, length: int,
                 poll_policy: PollPolicy, check_bulk_in_fifo: bool) -> bytes:
    """Poll a CHECK_*_STATUS request until the device reports STATUS_SUCCESS, and return that response."""

    for poll_count in itertools.count(1):

        response = _control_in(session, recipient, request, 0x0000, index, length)

        match response[0]:
            case ControlStatus.SUCCESS:
                return response
            case ControlStatus.PENDING:
                if check_bulk_in_fifo and not _bulk_in_fifo_is_empty(response):
                    raise BulkInFifoNotEmptyError(request, response[0])
            case status:
                raise StatusUnexpectedFailureError(request, status)

        log.debug("%s: pending (poll %d)", request, poll_count)

        if poll_policy.max_polls is not None and poll_count >= poll_policy.max_polls:
            raise PollLimitError(request, ControlStatus.PENDING)

        if poll_policy.interval > 0.0:
            time.sleep(poll_policy.interval)


def get_capabilities(session: SessionContext, interface_number: int) -> Capabilities:
    """Get USBTMC interface capabilities.

    This is a USBTMC request that USBTMC devices must support (section 4.2.1.8).
    """

    request = ControlRequest.GET_CAPABILITIES
    response = _control_in(session, Recipient.INTERFACE, request, 0x0000, interface_number,
                           GET_CAPABILITIES_RESPONSE_SIZE)
    if response[0] != ControlStatus.SUCCESS:
        _raise_status_error(request, response[0])

    (bcd_version, interface_capabilities, device_capabilities) = struct.unpack_from("<HBB", response, 2)

    return Capabilities(
        bcd_version                     = bcd_version,
        accepts_indicator_pulse_request = ((interface_capabilities >> 2) & 1) != 0,
        is_talk_only                    = ((interface_capabilities >> 1) & 1) != 0,
        is_listen_only                  = ((interface_capabilities >> 0) & 1) != 0,
        supports_bulk_in_term_char      = ((device_capabilities >> 0) & 1) != 0
    )


def indicator_pulse(session: SessionContext, interface_number: int) -> None:
    """Ask the device to briefly turn on its activity indicator.

    USBTMC interfaces may or may not support this request (section 4.2.1.9).
    """

    request = ControlRequest.INDICATOR_PULSE
    response = _control_in(session, Recipient.INTERFACE, request, 0x0000, interface_number, 1)
    if response[0] != ControlStatus.SUCCESS:
        _raise_status_error(request, response[0])


def clear_buffers(session: SessionContext, interface_number: int, poll_policy: PollPolicy = PollPolicy()) -> None:
    """Clear the input and output buffers of the USBTMC interface (sections 4.2.1.6 and 4.2.1.7).

    No Bulk transfer may be in progress when this is called.
    """

    # The sequence starts by sending an INITIATE_CLEAR request to the device.

    request = ControlRequest.INITIATE_CLEAR
    response = _control_in(session, Recipient.INTERFACE, request, 0x0000, interface_number, 1)
    if response[0] != ControlStatus.SUCCESS:
        _raise_status_error(request, response[0])

    # The INITIATE_CLEAR request was acknowledged and the device is executing it.
    # We read the clear status from the device until it reports success.

    _poll_status(session, Recipient.INTERFACE, ControlRequest.CHECK_CLEAR_STATUS, interface_number, 2,
                 poll_policy, check_bulk_in_fifo=True)

    log.debug("USBTMC interface %d cleared.", interface_number)


def clear_feature(session: SessionContext, endpoint: Endpoint) -> None:
    """Clear the Halt condition on the given endpoint."""
    with session.transport() as transport:
        transport.clear_halt(endpoint.address)


def _abort(session: SessionContext, endpoint_index: int, transfer_btag: int,
           initiate_request: ControlRequest, check_request: ControlRequest,
           poll_policy: PollPolicy, check_bulk_in_fifo: bool) -> int:

    response = _control_in(session, Recipient.ENDPOINT, initiate_request, transfer_btag, endpoint_index, 2)
    if response[0] != ControlStatus.SUCCESS:
        _raise_status_error(initiate_request, response[0])

    response = _poll_status(session, Recipient.ENDPOINT, check_request, endpoint_index, 8,
                            poll_policy, check_bulk_in_fifo=check_bulk_in_fifo)

    (count, ) = struct.unpack_from("<L", response, 4)
    return count


def abort_bulk_out(session: SessionContext, bulk_out_endpoint: Endpoint, transfer_btag: int,
                   poll_policy: PollPolicy = PollPolicy()) -> int:
    """Abort the Bulk-OUT transfer identified by `transfer_btag` (sections 4.2.1.2 and 4.2.1.3).

    Returns the number of message bytes the device received and did not discard.
    """
    check_bulk_out_endpoint(bulk_out_endpoint)

    return _abort(session, bulk_out_endpoint.address & 0x7f, transfer_btag,
                  ControlRequest.INITIATE_ABORT_BULK_OUT, ControlRequest.CHECK_ABORT_BULK_OUT_STATUS,
                  poll_policy, check_bulk_in_fifo=False)


def abort_bulk_in(session: SessionContext, bulk_in_endpoint: Endpoint, transfer_btag: int,
                  poll_policy: PollPolicy = PollPolicy()) -> int:
    """Abort the Bulk-IN transfer identified by `transfer_btag` (sections 4.2.1.4 and 4.2.1.5).

    Returns the number of message bytes the device transferred to the Host before the abort.
    """
    check_bulk_in_endpoint(bulk_in_endpoint)

    return _abort(session, (bulk_in_endpoint.address & 0x7f) | Direction.IN, transfer_btag,
                  ControlRequest.INITIATE_ABORT_BULK_IN, ControlRequest.CHECK_ABORT_BULK_IN_STATUS,
                  poll_policy, check_bulk_in_fifo=True)


def read_status_byte(session: SessionContext, interface_number: int) -> int:
    """Read the device status byte.

    The request carries a fresh bTag that the device echoes in its response. The bTag comes from the
    session's shared 1..255 sequence. Note that USB488 section 4.3.1 restricts the bTag of this request
    to 2..127, so a strictly conforming device may reject the request when the sequence is at 1 or
    above 127.
    """

    btag = session.btag.next()

    request = ControlRequest.READ_STATUS_BYTE
    response = _control_in(session, Recipient.INTERFACE, request, btag, interface_number, 3)

    match response[0]:
        case ControlStatus.SUCCESS:
            pass
        case ControlStatus.FAILED:
            raise StatusFailureError(request, response[0])
        case status:
            raise StatusUnexpectedFailureError(request, status)

    if response[1] != btag:
        log.warning("Unexpected bTag value in READ_STATUS_BYTE response (expected 0x%02x, got 0x%02x).",
                    btag, response[1])

    return response[2]
