"""Push ID generation.

Push IDs are 20 character keys that sort by creation time. The first 8
characters encode the creation time in milliseconds and the last 12 carry
72 bits of entropy. When several IDs are generated in the same millisecond,
or the clock steps backwards, the previous timestamp is reused and the
entropy is incremented as a base 64 number, so IDs from one generator are
always strictly increasing.
"""

import random
import threading
import time

# Base 64 alphabet in ASCII order, so that string comparison matches
# numeric comparison. This is not standard base64.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

PUSH_ID_LENGTH = 20
_STAMP_CHARS = 8
_ENTROPY_CHARS = 12


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class PushIDGenerator:
    """Thread-safe generator of time-ordered push IDs."""

    def __init__(self, rng: random.Random | None = None, clock=_now_millis):
        if rng is None:
            rng = random.Random(time.time_ns())
        self._rng = rng
        self._clock = clock
        self._lock = threading.Lock()
        self._stamp = 0
        # least significant digit first: _last[0] is the final character
        self._last = [rng.randrange(64) for _ in range(_ENTROPY_CHARS)]

    def generate(self) -> str:
        with self._lock:
            now = self._clock()
            # a clock that stalls or steps backwards keeps the previous stamp
            if now <= self._stamp:
                now = self._stamp
                for i in range(_ENTROPY_CHARS):
                    self._last[i] += 1
                    if self._last[i] < 64:
                        break
                    self._last[i] = 0
            self._stamp = now
            tail = "".join(PUSH_CHARS[d] for d in reversed(self._last))

        head = []
        for _ in range(_STAMP_CHARS):
            head.append(PUSH_CHARS[now % 64])
            now //= 64
        return "".join(reversed(head)) + tail

    __call__ = generate


_default_generator: PushIDGenerator | None = None
_default_lock = threading.Lock()


def default_generator() -> PushIDGenerator:
    """Return the process-wide generator, creating it on first use."""
    global _default_generator
    if _default_generator is None:
        with _default_lock:
            if _default_generator is None:
                _default_generator = PushIDGenerator()
    return _default_generator


def generate_push_id() -> str:
    """Generate a unique 20 character push ID with the default generator."""
    return default_generator().generate()


def push_id_timestamp(push_id: str) -> int:
    """Decode the millisecond timestamp encoded in a push ID."""
    if len(push_id) != PUSH_ID_LENGTH:
        raise ValueError(f"push id must be {PUSH_ID_LENGTH} characters: {push_id!r}")
    stamp = 0
    for ch in push_id[:_STAMP_CHARS]:
        idx = PUSH_CHARS.find(ch)
        if idx < 0:
            raise ValueError(f"invalid push id character {ch!r}")
        stamp = stamp * 64 + idx
    return stamp
