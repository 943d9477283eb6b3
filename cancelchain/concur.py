"""Running trio work as cancelable futures

A CancelableFuture doesn't run anything by itself; its producer has to start
the work somewhere. For work written as an async function, that somewhere is a
trio task, and a task needs a nursery. We don't have an implicit global event
loop to start tasks in, so the nursery is passed in explicitly, and it bounds
the lifetime of the work like any other task in it.

"""
from __future__ import annotations
from cancelchain.errors import CancellationError, InvalidProducer
from cancelchain.future import CancelableFuture, Fulfill, Fail, RegisterCancelHandler
from cancelchain.outcome import Outcome, Value
import logging
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'start',
    'delay',
    'gather',
    'run_all',
]

T = t.TypeVar('T')

def start(nursery: trio.Nursery, async_fn: t.Callable[..., t.Awaitable[T]], *args: t.Any) -> CancelableFuture[T]:
    """Run `async_fn(*args)` in a new task in `nursery`, and return a future of its result.

    The task runs inside its own cancel scope; requesting cancellation of the
    future cancels that scope. If cancellation is requested before the task gets
    to run, `async_fn` is never called.

    If the task is cancelled from outside, for example because the whole nursery
    is cancelled, the future fails with CancellationError.

    """
    if not callable(async_fn):
        raise InvalidProducer("async_fn must be callable", async_fn)
    def producer(fulfill: Fulfill, fail: Fail, on_cancel: RegisterCancelHandler) -> None:
        scope = trio.CancelScope()
        async def run() -> None:
            if scope.cancel_called:
                logger.debug("start(%s): canceled before starting", async_fn)
                fail(CancellationError())
                return
            value: t.Any = None
            try:
                with scope:
                    value = await async_fn(*args)
            except Exception as e:
                fail(e)
            except BaseException:
                logger.debug("start(%s): cancelled from outside", async_fn)
                fail(CancellationError())
                raise
            else:
                if scope.cancelled_caught:
                    fail(CancellationError())
                else:
                    fulfill(value)
        on_cancel(scope.cancel)
        nursery.start_soon(run)
    return CancelableFuture(producer)

async def _sleep_then(seconds: float, value: T) -> T:
    await trio.sleep(seconds)
    return value

def delay(nursery: trio.Nursery, seconds: float, value: T=None) -> CancelableFuture[T]: # type: ignore
    "A future which fulfills with `value` after `seconds`; canceling it stops the timer."
    return start(nursery, _sleep_then, seconds, value)

def gather(futures: t.Iterable[CancelableFuture[T]]) -> CancelableFuture[t.List[T]]:
    """A future of the values of all of these futures, in order.

    Fails as soon as any of them fails, with that failure; the others keep
    running. Requesting cancellation of the returned future requests
    cancellation of all of them.

    """
    futures = list(futures)
    def producer(fulfill: Fulfill, fail: Fail, on_cancel: RegisterCancelHandler) -> None:
        results: t.List[t.Any] = [None]*len(futures)
        remaining = len(futures)
        if remaining == 0:
            fulfill(results)
            return
        def settled(n: int, result: Outcome[T]) -> None:
            nonlocal remaining
            if isinstance(result, Value):
                results[n] = result.value
                remaining -= 1
                if remaining == 0:
                    fulfill(results)
            else:
                fail(result.error)
        for fut in futures:
            on_cancel(fut.request_cancellation)
        for i, fut in enumerate(futures):
            fut.get_cb(lambda result, n=i: settled(n, result))
    return CancelableFuture(producer)

async def run_all(nursery: trio.Nursery, callables: t.List[t.Callable[[], t.Awaitable[T]]]) -> t.List[T]:
    "Call all the functions passed to it in parallel, and return all the results."
    return await gather([start(nursery, func) for func in callables])
