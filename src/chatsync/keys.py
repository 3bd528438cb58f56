from __future__ import annotations

import secrets
import threading
import time
from typing import Callable, List

# ASCII-ordered so that lexical key order matches creation order.
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def _now_ms() -> int:
    return int(time.time() * 1000)


class PushKeyGenerator:
    """Generates 20 character keys: 8 for the millisecond clock, 12 random.

    Keys minted within the same millisecond reuse the previous random part
    incremented by one, so keys are strictly increasing per generator.
    """

    def __init__(self, *, now_func: Callable[[], int] = _now_ms) -> None:
        self._now = now_func
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_rand: List[int] = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now_ms = self._now()
            if now_ms <= self._last_ms:
                self._increment()
            else:
                self._last_ms = now_ms
                self._last_rand = [secrets.randbelow(64) for _ in range(12)]
            now_ms = self._last_ms
            rand = list(self._last_rand)

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now_ms % 64])
            now_ms //= 64
        if now_ms:
            raise ValueError("clock value does not fit in a push key")
        return "".join(reversed(time_chars)) + "".join(PUSH_CHARS[i] for i in rand)

    def _increment(self) -> None:
        index = 11
        while index >= 0 and self._last_rand[index] == 63:
            self._last_rand[index] = 0
            index -= 1
        if index < 0:
            # random part exhausted within one millisecond; borrow the next one
            self._last_ms += 1
            self._last_rand = [secrets.randbelow(64) for _ in range(12)]
            return
        self._last_rand[index] += 1
