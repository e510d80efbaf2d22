"""Identifier helpers for pipeline runs."""

from __future__ import annotations

import secrets
import threading
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_LOCK = threading.Lock()
_state = {"millis": 0, "counter": 0}


def _to_base36(value: int) -> str:
    digits: list[str] = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
        if value == 0:
            return "".join(reversed(digits))


def generate_cuid(length: int = 24) -> str:
    """Generate a sortable, collision-resistant lowercase id with a `c` prefix.

    Ids created within the same millisecond differ in their counter segment,
    so ordering by id follows creation order within one process.
    """
    now_millis = int(time.time() * 1000)
    with _LOCK:
        if now_millis == _state["millis"]:
            _state["counter"] += 1
        else:
            _state["millis"] = now_millis
            _state["counter"] = 0
        counter = _state["counter"]

    body_len = max(length - 1, 8)
    prefix = f"{_to_base36(now_millis)}{_to_base36(counter).rjust(4, '0')}"
    padding = "".join(
        secrets.choice(_ALPHABET) for _ in range(max(body_len - len(prefix), 0))
    )
    return f"c{(prefix + padding)[:body_len]}"
