"""
Export nonces for bill claims.

A nonce is 32 bytes:

    [0:20]   owner address (the signing wallet)
    [20:24]  instance id, big-endian u32
    [24:32]  timestamp in seconds, big-endian u64

The timestamp field is derived from the wall clock but never moves backwards:
each call yields a value strictly greater than the previous one, so nonces from
one process stay unique across clock corrections and same-second calls.
"""

import logging
import time
from typing import Callable, Optional, Union

from eth_utils import to_canonical_address

from .lib.errors.app_error import ClockError, ConfigError

logger = logging.getLogger(__name__)

NONCE_SIZE = 32
MAX_INSTANCE_ID = 2**32 - 1
MAX_TIMESTAMP = 2**64 - 1


class NonceGenerator:
    """
    Issues export nonces for one signing wallet and agent instance.

    Args:
        owner: Signing wallet address, hex string or 20 raw bytes.
        instance_id: Agent instance id, an unsigned 32-bit integer.
        clock: Returns the current time in seconds. Injected by tests.

    Raises:
        ConfigError: If the owner is not an address or the instance id does
            not fit in 32 bits.
    """

    def __init__(
        self,
        owner: Union[bytes, str],
        instance_id: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        try:
            owner_bytes = to_canonical_address(owner)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid nonce owner address: {e}") from e
        if not 0 <= instance_id <= MAX_INSTANCE_ID:
            raise ConfigError(
                "Instance id must fit in an unsigned 32-bit integer",
                context={"instance_id": instance_id},
            )

        self._prefix = owner_bytes + instance_id.to_bytes(4, "big")
        self._clock = clock
        self._last: Optional[int] = None

    def _now(self) -> int:
        try:
            now = int(self._clock())
        except (OSError, OverflowError, ValueError) as e:
            raise ClockError(f"Unable to read system clock: {e}") from e
        if now < 0 or now > MAX_TIMESTAMP:
            raise ClockError(
                "System clock is outside the nonce timestamp range",
                context={"timestamp": now},
            )
        return now

    def next(self) -> bytes:
        """
        Return a fresh nonce.

        Raises:
            ClockError: If the clock cannot be read. No nonce is consumed.
        """
        now = self._now()
        if self._last is not None and now <= self._last:
            if now < self._last:
                logger.warning(
                    f"System clock moved backwards ({now} < {self._last}); "
                    "advancing nonce timestamp past the last issued value"
                )
            now = self._last + 1
        self._last = now
        return self._prefix + now.to_bytes(8, "big")
