"""Shared mutable state of a USBTMC session.

A session owns three things that all protocol operations need: the transport (the opened device),
the bTag sequence, and the transfer timeout. Each of them is guarded by its own lock, so that a
session can be used from several threads without data races.

Note that the locks do not make the USBTMC exchange itself reentrant. A device expects each
query to be followed by a read of its response; callers must serialize command/query pairs.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .constants import DEFAULT_TIMEOUT


class BTag:
    """Generator for the bTag transfer identifier.

    The Host must set bTag such that 1 <= bTag <= 255, and should increment it by one each time
    it sends a new Bulk-OUT header. The first value returned is 1; after 255 comes 1 again.
    """

    def __init__(self, initial_value: int = 1):
        if not 1 <= initial_value <= 255:
            raise ValueError(f"Bad initial bTag value: {initial_value}.")
        self._lock = threading.Lock()
        self._value = initial_value

    def next(self) -> int:
        """Return the current bTag value, and advance."""
        with self._lock:
            btag = self._value
            self._value = 1 if btag == 255 else btag + 1
        return btag

    def peek(self) -> int:
        """Return the value that the next call to next() will return."""
        with self._lock:
            return self._value


class Timeout:
    """A transfer timeout that may be changed at any time.

    The value is read at the start of each transfer, so a change affects the next transfer,
    not transfers that are already in flight.
    """

    def __init__(self, seconds: float = DEFAULT_TIMEOUT):
        self._lock = threading.Lock()
        self._seconds = Timeout._check(seconds)

    @staticmethod
    def _check(seconds: float) -> float:
        if seconds < 0:
            raise ValueError(f"Bad timeout value: {seconds} (must be non-negative).")
        return float(seconds)

    @property
    def seconds(self) -> float:
        with self._lock:
            return self._seconds

    @seconds.setter
    def seconds(self, seconds: float) -> None:
        seconds = Timeout._check(seconds)
        with self._lock:
            self._seconds = seconds

    def milliseconds(self) -> int:
        """The timeout in [ms], as libusb wants it.

        Zero means 'no timeout' to libusb, so a positive timeout is rounded up to at least 1 ms.
        """
        seconds = self.seconds
        milliseconds = round(seconds * 1000.0)
        if milliseconds == 0 and seconds > 0:
            return 1
        return milliseconds


class SessionContext:
    """The transport, bTag generator, and timeout shared by all operations of a session."""

    def __init__(self, transport, btag: Optional[BTag] = None, timeout: Optional[Timeout] = None):
        self._transport = transport
        self._transport_lock = threading.Lock()
        self.btag = BTag() if btag is None else btag
        self.timeout = Timeout() if timeout is None else timeout
        # bTags of the most recent DEV_DEP_MSG_OUT and REQUEST_DEV_DEP_MSG_IN transactions.
        # They are recorded before the first transfer, so they identify a transaction that failed halfway.
        self.last_bulk_out_btag: Optional[int] = None
        self.last_bulk_in_btag: Optional[int] = None

    @contextmanager
    def transport(self) -> Iterator:
        """Get exclusive access to the transport for the duration of a single transfer."""
        with self._transport_lock:
            yield self._transport
