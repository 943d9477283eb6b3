"""Errors raised by cancelable futures

There are two kinds of errors here. `InvalidProducer` and `InvalidContinuation`
are configuration mistakes, raised immediately at the call site which made
them; they never become the failure of a future.

`CancellationError` is the failure of a future which was canceled. It is a
normal exception, but it also carries an `is_canceled` attribute set to True,
and code which wants to tell cancellation apart from a real failure should
check that attribute (with `is_cancellation`) rather than the type. That way
anything else shaped like a cancellation is treated as one.

"""
from __future__ import annotations
import typing as t

__all__ = [
    'CancellationError',
    'InvalidProducer',
    'InvalidContinuation',
    'is_cancellation',
]

class CancellationError(Exception):
    "The failure of a future whose cancellation was requested before it settled"
    is_canceled = True

    def __init__(self, *args: t.Any) -> None:
        super().__init__(*(args or ("future was canceled",)))

    def __eq__(self, other: object) -> bool:
        # all cancellations look alike
        return isinstance(other, CancellationError)

    def __hash__(self) -> int:
        return hash(CancellationError)

class InvalidProducer(TypeError):
    "Raised when a future is constructed with something that can't be called"
    pass

class InvalidContinuation(TypeError):
    "Raised when something that can't be called is passed as a continuation"
    pass

def is_cancellation(error: object) -> bool:
    """Is this failure the result of a cancellation?

    This checks the shape of the error, not its type, so it's true for anything
    with `is_canceled` set to True.

    """
    return getattr(error, 'is_canceled', False) is True
