"""The outcome library, plus failures which aren't exceptions

A settled future holds an `outcome.Value` or an `outcome.Error`. `outcome.Error`
only holds exceptions, but a producer can fail a future with any value at
all. Such a value is wrapped in a `Rejection`, and unwrapped again before it's
passed to a failure continuation, so continuations see exactly what the
producer failed with.

Outcomes held by futures are shared between every observer, so we never call
`unwrap` on them (an outcome can only be unwrapped once); `unwrap_shared` reads
them without consuming them.

"""
from __future__ import annotations
from outcome import Outcome, Value, Error
import typing as t

__all__ = [
    'Outcome',
    'Value',
    'Error',
    'Rejection',
    'as_error',
    'reason_of',
    'unwrap_shared',
]

T = t.TypeVar('T')

class Rejection(Exception):
    "A future failed with this reason, which is not itself an exception"
    def __init__(self, reason: t.Any) -> None:
        super().__init__("future failed with a non-exception reason", reason)
        self.reason = reason

def as_error(reason: t.Any) -> BaseException:
    "Turn any failure reason into something we can store in an outcome.Error"
    if isinstance(reason, BaseException):
        return reason
    return Rejection(reason)

def reason_of(error: BaseException) -> t.Any:
    "The reason originally passed to `fail` which produced this error"
    if isinstance(error, Rejection):
        return error.reason
    return error

def unwrap_shared(result: Outcome[T]) -> T:
    "Return the value or raise the error, leaving the outcome usable by others"
    if isinstance(result, Value):
        return result.value
    raise result.error
