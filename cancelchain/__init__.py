"""Futures with cancellation that propagates through chains of derived futures

A `CancelableFuture` is the eventual result of some asynchronous work, much
like a promise. What it adds is cancellation: anyone holding a future can call
`request_cancellation`, and then:

- the future is never observed as fulfilled; anyone awaiting it gets a
  `CancellationError` instead, even if the work finishes successfully later;
- cleanup registered by the work itself runs, exactly once, in the order it
  was registered;
- cancellation spreads to everything connected to the future through `chain`:
  upwards to the future it was derived from, and from there downwards to
  every derived future which was still waiting on it.

For example:

```
def producer(fulfill, fail, register_cancel_handler):
    scope = trio.CancelScope()
    async def timer():
        with scope:
            await trio.sleep(2)
            fulfill("done")
    nursery.start_soon(timer)
    register_cancel_handler(scope.cancel)

fetched = CancelableFuture(producer)
shown = fetched.chain(str.upper)
shown.request_cancellation()
# fetched.is_canceled is now True, the timer's scope was cancelled,
# and awaiting either future raises CancellationError.
```

Most work is written as async functions, so `cancelchain.concur.start` makes
a future out of an async function run in a trio nursery, with its cancel
scope already hooked up to cancellation.

Cancellation is cooperative and structural. A canceled future fails with a
`CancellationError`, which carries `is_canceled = True`; `is_cancellation`
checks for that shape, so callers can tell "the operation failed" apart from
"we stopped caring about the operation" with the same code path they use for
any other failure:

```
try:
    result = await shown
except Exception as e:
    if is_cancellation(e):
        ...
```

Continuations and cancel handlers are plain callbacks, called synchronously,
in the order they were registered, by whichever call settled or canceled the
future. We don't defer them to a scheduler; events happen in some order and
callbacks are called in that same order, which keeps bookkeeping simple.
Awaiting a future is the only place we suspend, and that's done with ordinary
trio primitives.

"""
from cancelchain.errors import CancellationError, InvalidProducer, InvalidContinuation, is_cancellation
from cancelchain.outcome import Rejection
from cancelchain.future import CancelableFuture
from cancelchain.concur import start, delay, gather, run_all

__all__ = [
    'CancelableFuture',
    'CancellationError',
    'InvalidProducer',
    'InvalidContinuation',
    'Rejection',
    'is_cancellation',
    'start',
    'delay',
    'gather',
    'run_all',
]
