"""
Deterministic random helpers shared between server decisions and clients.

The spinner that picks the starting player is animated independently on
every client. The server only broadcasts a seed; each client feeds it to
its own mulberry32 and lands on the same index. That only works if this
generator matches the browser implementation bit for bit, so all arithmetic
here is done modulo 2**32 exactly like JavaScript's ``Math.imul`` and ``>>>``.
"""

import random
from typing import Callable, MutableSequence, TypeVar

T = TypeVar("T")

RandomSource = Callable[[], float]

_MASK32 = 0xFFFFFFFF
_GOLDEN = 0x6D2B79F5


def imul(a: int, b: int) -> int:
    """32-bit wrapping multiply, returned as an unsigned value."""
    return ((a & _MASK32) * (b & _MASK32)) & _MASK32


def mulberry32(seed: int) -> RandomSource:
    """
    Build a mulberry32 generator.

    Args:
        seed: Any integer; only the low 32 bits are used.

    Returns:
        A callable returning floats in [0, 1).
    """
    state = seed & _MASK32

    def next_float() -> float:
        nonlocal state
        state = (state + _GOLDEN) & _MASK32
        t = state
        x = imul(t ^ (t >> 15), 1 | t)
        x ^= (x + imul(x ^ (x >> 7), 61 | x)) & _MASK32
        return ((x ^ (x >> 14)) & _MASK32) / 4294967296

    return next_float


def shuffle_in_place(items: MutableSequence[T], rng: RandomSource = random.random) -> MutableSequence[T]:
    """Fisher-Yates shuffle driven by an injectable random source."""
    for i in range(len(items) - 1, 0, -1):
        j = int(rng() * (i + 1))
        items[i], items[j] = items[j], items[i]
    return items


def random_seed(rng: RandomSource = random.random) -> int:
    """Draw a 31-bit seed."""
    return int(rng() * 2**31)
