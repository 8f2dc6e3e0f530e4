"""A scripted stand-in for the USB transport, and helpers for building device responses."""

import struct
from collections import deque
from typing import NamedTuple, Optional

from usbtmc_engine.constants import BulkMessageID, Direction, TransferType
from usbtmc_engine.libusb_library import LibUsbLibraryFunctionCallError
from usbtmc_engine.session import SessionContext, Timeout
from usbtmc_engine.usbtmc_types import Capabilities, Endpoint

BULK_OUT = Endpoint(0x02, 64, TransferType.BULK, Direction.OUT)
BULK_IN = Endpoint(0x81, 64, TransferType.BULK, Direction.IN)
INTERRUPT_IN = Endpoint(0x83, 8, TransferType.INTERRUPT, Direction.IN)

NO_TERM_CHAR = Capabilities(0x0100, False, False, False, False)
WITH_TERM_CHAR = Capabilities(0x0100, False, False, False, True)

LIBUSB_ERROR_TIMEOUT = -7


class ControlCall(NamedTuple):
    request_type: int
    request: int
    value: int
    index: int
    length: int
    timeout: int


class BulkOutCall(NamedTuple):
    endpoint: int
    data: bytes
    timeout: int


class BulkInCall(NamedTuple):
    endpoint: int
    max_size: int
    timeout: int


def bulk_in_transfer(payload: bytes, end_of_message: bool, btag: int = 1) -> bytes:
    """Make a DEV_DEP_MSG_IN transfer as a device would send it."""
    header = struct.pack("<BBBxLB3x", BulkMessageID.DEV_DEP_MSG_IN, btag, btag ^ 0xff, len(payload),
                         0x01 if end_of_message else 0x00)
    return header + payload


def transport_timeout() -> LibUsbLibraryFunctionCallError:
    return LibUsbLibraryFunctionCallError(LIBUSB_ERROR_TIMEOUT, "LIBUSB_ERROR_TIMEOUT")


class FakeTransport:
    """Records every transfer, and answers Bulk-IN and control transfers from scripted queues.

    A queued exception is raised instead of being returned.
    """

    def __init__(self, control_responses=(), bulk_in_responses=()):
        self.control_responses = deque(control_responses)
        self.bulk_in_responses = deque(bulk_in_responses)
        self.calls = []
        self.fail_bulk_out_at: Optional[int] = None

    @property
    def control_calls(self) -> list[ControlCall]:
        return [call for call in self.calls if isinstance(call, ControlCall)]

    @property
    def bulk_out_calls(self) -> list[BulkOutCall]:
        return [call for call in self.calls if isinstance(call, BulkOutCall)]

    @property
    def bulk_in_calls(self) -> list[BulkInCall]:
        return [call for call in self.calls if isinstance(call, BulkInCall)]

    @property
    def halts_cleared(self) -> list[int]:
        return [call[1] for call in self.calls if isinstance(call, tuple) and call[0] == "clear_halt"]

    def control_transfer(self, request_type, request, value, index, length, timeout):
        self.calls.append(ControlCall(request_type, request, value, index, length, timeout))
        response = self.control_responses.popleft()
        if isinstance(response, Exception):
            raise response
        return bytes(response)

    def bulk_transfer_out(self, endpoint_address, data, timeout):
        if self.fail_bulk_out_at is not None and len(self.bulk_out_calls) == self.fail_bulk_out_at:
            raise transport_timeout()
        self.calls.append(BulkOutCall(endpoint_address, bytes(data), timeout))

    def bulk_transfer_in(self, endpoint_address, max_size, timeout):
        self.calls.append(BulkInCall(endpoint_address, max_size, timeout))
        response = self.bulk_in_responses.popleft()
        if isinstance(response, Exception):
            raise response
        assert len(response) <= max_size
        return bytes(response)

    def clear_halt(self, endpoint_address):
        self.calls.append(("clear_halt", endpoint_address))


def make_session(transport: FakeTransport, timeout: float = 2.0) -> SessionContext:
    return SessionContext(transport, timeout=Timeout(timeout))
