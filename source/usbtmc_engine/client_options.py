"""Connection settings of a UsbTmcClient."""

from typing import NamedTuple, Optional

from .constants import DEFAULT_TERM_CHAR, DEFAULT_TIMEOUT
from .control import PollPolicy


class UsbTmcClientOptions(NamedTuple):
    """Connection settings. The defaults suit a fully compliant USBTMC device."""
    timeout: float = DEFAULT_TIMEOUT     # Transfer timeout, in [s]. Can be changed later using UsbTmcClient.set_timeout().
    term_char: int = DEFAULT_TERM_CHAR   # Requested Bulk-IN termination character, if the device supports the feature.
    clear_at_connect: bool = True        # Clear the interface buffers and the endpoint halts after connecting.
    poll_interval: float = 0.0           # Pause between CHECK_*_STATUS polls, in [s].
    max_polls: Optional[int] = None      # Give up polling CHECK_*_STATUS after this many requests. None: no limit.

    def poll_policy(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval, max_polls=self.max_polls)
