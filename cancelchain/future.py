"""A future which can be canceled, along with everything derived from it

A `CancelableFuture` is created with a producer, a function which is called
immediately with three capabilities: `fulfill`, `fail`, and
`register_cancel_handler`. The producer starts some work, arranges for
`fulfill` or `fail` to be called when the work is done, and registers cancel
handlers which stop the work and release its resources.

Anyone holding the future can call `request_cancellation`. That marks the
future canceled, calls every cancel handler in the order they were registered,
and, unless the future already settled, settles it with a `CancellationError`.
Whatever the producer does afterwards is ignored, so a canceled future is never
observed as fulfilled unless it was fulfilled first.

`chain` derives a new future whose settlement is computed from the parent's
by a continuation. The parent and the derived future are linked in both
directions, through each other's cancel handlers:

- requesting cancellation of the derived future requests cancellation of the
  parent;
- requesting cancellation of the parent requests cancellation of every derived
  future which is still waiting for the parent to settle.

So canceling any future in a chain cancels its whole ancestry, and from there
reaches every other future that was still waiting on one of those ancestors.
A sibling which has already received its parent's value is left alone; its
work no longer depends on the parent.

All callbacks (continuations, cancel handlers, settlement callbacks) are
called synchronously, in the order they were registered, by whichever call
caused them: `fulfill`, `fail`, `request_cancellation`, or `chain` on a future
which already settled. There is no scheduler in between. Callbacks caused by
other callbacks are queued and run by that same outermost call, so a chain can
be as long as you like without running out of stack.

Cancel handlers may be asynchronous: if calling a handler returns an
awaitable, `request_cancellation` returns an awaitable completion, which runs
those awaitables in order. Await it to know that all cleanup has finished.

"""
from __future__ import annotations
from cancelchain.errors import CancellationError, InvalidProducer, InvalidContinuation
from cancelchain.outcome import Outcome, Value, Error, as_error, reason_of, unwrap_shared
from dataclasses import dataclass, field
import collections
import functools
import inspect
import logging
import threading
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'CancelableFuture',
    'Producer',
    'CancelHandler',
]

T = t.TypeVar('T')

Fulfill = t.Callable[[t.Any], None]
Fail = t.Callable[[t.Any], None]
CancelHandler = t.Callable[[], t.Any]
"A cleanup callback; if it returns an awaitable, the cleanup finishes when that's awaited"
RegisterCancelHandler = t.Callable[[CancelHandler], t.Optional[t.Awaitable[None]]]
Producer = t.Callable[[Fulfill, Fail, RegisterCancelHandler], None]
Deliver = t.Callable[['Outcome[t.Any]', Fulfill, Fail], None]

def _raise_errors(errors: t.List[Exception], message: str="cancel handlers raised") -> None:
    if len(errors) == 1:
        raise errors[0]
    elif errors:
        raise ExceptionGroup(message, errors)

async def _complete_cleanup(pending: t.List[t.Awaitable[t.Any]], errors: t.List[Exception]) -> None:
    "Await the asynchronous cancel handlers, in order, then raise what the handlers raised"
    for awaitable in pending:
        try:
            await awaitable
        except Exception as e:
            errors.append(e)
    _raise_errors(errors)

#### Running callbacks without nesting
# Settling one future settles the futures derived from it, which settle the futures
# derived from those, and so on; likewise for cancellation. Calling each step from
# the previous one would use a stack frame per link, so a chain could only be as
# deep as the recursion limit. Instead the outermost call runs a queue of steps, and
# calls made while it's running only add to that queue.
#
# New steps go at the front of the queue, in order, so steps run in the same order
# they would if each call ran its steps itself.
class _Cancellation:
    "The cancel handlers and settlements queued by one outermost request_cancellation"
    def __init__(self, steps: t.List[t.Callable[[], t.Any]]) -> None:
        self.steps: t.Deque[t.Callable[[], t.Any]] = collections.deque(steps)
        self.pending: t.List[t.Awaitable[t.Any]] = []
        self.errors: t.List[Exception] = []

    def run(self) -> None:
        while self.steps:
            step = self.steps.popleft()
            try:
                ret = step()
            except Exception as e:
                logger.debug("cancel handler %s raised %r", step, e)
                self.errors.append(e)
            else:
                if inspect.isawaitable(ret):
                    self.pending.append(ret)

class _Running(threading.local):
    "The queues being run on this thread, if any"
    def __init__(self) -> None:
        self.callbacks: t.Optional[t.Deque[t.Callable[[], None]]] = None
        self.cancellation: t.Optional[_Cancellation] = None

_running = _Running()

def _run_callbacks(calls: t.List[t.Callable[[], None]], *, first: bool=True) -> None:
    """Run these settlement callbacks, or queue them if callbacks are already running.

    When queueing, `first` puts them ahead of everything already queued, and
    otherwise they go after it. Every callback runs even if some raise; the
    errors are raised afterwards by the outermost call.

    """
    queue = _running.callbacks
    if queue is not None:
        if first:
            queue.extendleft(reversed(calls))
        else:
            queue.extend(calls)
        return
    queue = _running.callbacks = collections.deque(calls)
    errors: t.List[Exception] = []
    try:
        while queue:
            call = queue.popleft()
            try:
                call()
            except Exception as e:
                logger.debug("settlement callback %s raised %r", call, e)
                errors.append(e)
    finally:
        _running.callbacks = None
    _raise_errors(errors, "settlement callbacks raised")

def _check_continuation(name: str, continuation: t.Any) -> None:
    if continuation is not None and not callable(continuation):
        raise InvalidContinuation(name + " must be callable", continuation)

class CancelableFuture(t.Generic[T]):
    "The result of some asynchronous work, which anyone holding it may cancel"
    def __init__(self, producer: Producer) -> None:
        """Call `producer` with the capabilities to settle this future and register cleanup.

        If the producer raises, the future fails with that exception (unless the
        producer already called `fulfill` or `fail`).

        """
        if not callable(producer):
            raise InvalidProducer("producer must be callable", producer)
        self._lock = threading.Lock()
        self._outcome: t.Optional[Outcome[T]] = None
        self._resolved = False
        self._canceled = False
        self._cancel_handlers: t.List[CancelHandler] = []
        self._settle_cbs: t.List[t.Callable[[Outcome[T]], None]] = []
        self._settled = trio.Event()
        try:
            producer(self._fulfill, self._fail, self.register_cancel_handler)
        except Exception as e:
            logger.debug("%s: producer raised %r", self, e)
            self._fail(e)

    @classmethod
    def fulfilled(cls, value: T) -> CancelableFuture[T]:
        "A future which is already fulfilled with `value`"
        return cls(lambda fulfill, fail, on_cancel: fulfill(value))

    @classmethod
    def failed(cls, reason: t.Any) -> CancelableFuture[t.Any]:
        "A future which has already failed with `reason`"
        return cls(lambda fulfill, fail, on_cancel: fail(reason))

    def __repr__(self) -> str:
        if self._outcome is None:
            state = "pending"
        elif isinstance(self._outcome, Value):
            state = "fulfilled"
        else:
            state = "failed"
        return f"CancelableFuture({state}, is_canceled={self._canceled}, at {id(self):#x})"

    #### Settlement
    def _claim(self) -> bool:
        "Resolve this future; returns False if it was already resolved."
        with self._lock:
            if self._resolved:
                return False
            self._resolved = True
            return True

    def _settle(self, result: Outcome[T]) -> None:
        with self._lock:
            if self._outcome is not None:
                return
            self._outcome = result
            callbacks, self._settle_cbs = self._settle_cbs, []
        logger.debug("%s: settled, notifying %d callbacks", self, len(callbacks))
        self._settled.set()
        _run_callbacks([functools.partial(cb, result) for cb in callbacks])

    def _fulfill(self, value: t.Any) -> None:
        if not self._claim():
            logger.debug("%s: already resolved, dropping fulfill(%r)", self, value)
            return
        if self._canceled:
            # request_cancellation settles us with CancellationError once our handlers have run
            logger.debug("%s: canceled, dropping fulfill(%r)", self, value)
        elif value is self:
            self._settle(Error(TypeError("a future can't be fulfilled with itself", value)))
        elif isinstance(value, CancelableFuture):
            self._adopt(value)
        elif inspect.iscoroutine(value):
            value.close()
            self._settle(Error(TypeError(
                "can't fulfill a future with a coroutine; run it with cancelchain.start", value)))
        else:
            self._settle(Value(value))

    def _fail(self, reason: t.Any) -> None:
        if not self._claim():
            logger.debug("%s: already resolved, dropping fail(%r)", self, reason)
            return
        if self._canceled:
            # a real failure after cancellation is indistinguishable from cancellation
            logger.debug("%s: canceled, dropping fail(%r)", self, reason)
        else:
            self._settle(Error(as_error(reason)))

    def _adopt(self, inner: CancelableFuture[T]) -> None:
        "Settle with the same outcome as `inner`; canceling us cancels `inner`."
        logger.debug("%s: adopting %s", self, inner)
        self.register_cancel_handler(inner.request_cancellation)
        inner.get_cb(self._settle_adopted)

    def _settle_adopted(self, result: Outcome[T]) -> None:
        if not self._canceled:
            self._settle(result)

    #### Observation
    def get_cb(self, cb: t.Callable[[Outcome[T]], None]) -> None:
        """Call `cb` with this future's outcome once it has settled.

        If it already settled, `cb` is called immediately, or, if we're inside
        another settlement callback, as soon as the callbacks already queued have
        run. The outcome is shared with every other observer; don't unwrap it.

        If `cb` raises, the other callbacks still run, and the error is raised
        afterwards from whichever call settled the future.

        """
        with self._lock:
            result = self._outcome
            if result is None:
                self._settle_cbs.append(cb)
                return
        # after any of our callbacks which are still queued, to keep registration order
        _run_callbacks([functools.partial(cb, result)], first=False)

    async def get(self) -> T:
        "Wait for this future to settle, and return its value or raise its failure"
        await self._settled.wait()
        assert self._outcome is not None
        return unwrap_shared(self._outcome)

    def __await__(self) -> t.Generator[t.Any, None, T]:
        return self.get().__await__()

    #### Cancellation
    @property
    def is_canceled(self) -> bool:
        "Whether cancellation of this future has been requested"
        return self._canceled

    def register_cancel_handler(self, handler: CancelHandler) -> t.Optional[t.Awaitable[t.Any]]:
        """Call `handler` when cancellation of this future is requested.

        Handlers are called in the order they were registered. If cancellation
        has already been requested, `handler` is called right now, and whatever it
        returns is returned, so that an asynchronous handler's awaitable can be
        awaited by the caller.

        """
        if not callable(handler):
            raise TypeError("cancel handler must be callable", handler)
        with self._lock:
            if not self._canceled:
                self._cancel_handlers.append(handler)
                return None
        logger.debug("%s: already canceled, calling late cancel handler %s", self, handler)
        return handler()

    def request_cancellation(self) -> t.Optional[t.Awaitable[None]]:
        """Cancel this future, calling its cancel handlers and those of everything linked to it.

        Returns None if every handler ran synchronously, or if cancellation was
        already requested. If some handler returned an awaitable, returns an
        awaitable which awaits those in order; await it to wait for cleanup to
        complete.

        """
        with self._lock:
            if self._canceled:
                return None
            self._canceled = True
            handlers, self._cancel_handlers = self._cancel_handlers, []
        logger.debug("%s: cancellation accepted, %d handlers", self, len(handlers))
        # Settle only after every handler ran, so that derived futures still waiting
        # on us are reached by their down-links before they see our outcome.
        steps: t.List[t.Callable[[], t.Any]] = [
            *handlers, functools.partial(self._settle, Error(CancellationError()))]
        cancellation = _running.cancellation
        if cancellation is not None:
            # a handler of some other future canceled us; that call runs our steps next
            cancellation.steps.extendleft(reversed(steps))
            return None
        cancellation = _running.cancellation = _Cancellation(steps)
        try:
            cancellation.run()
        finally:
            _running.cancellation = None
        if cancellation.pending:
            return _complete_cleanup(cancellation.pending, cancellation.errors)
        _raise_errors(cancellation.errors)
        return None

    #### Chaining
    def _derive(self, deliver: Deliver) -> CancelableFuture[t.Any]:
        link = ChainLink(self, deliver)
        derived: CancelableFuture[t.Any] = CancelableFuture(link.produce)
        link.derived = derived
        self.register_cancel_handler(link.cancel_derived)
        self.get_cb(link.parent_settled)
        return derived

    def chain(self,
              on_success: t.Optional[t.Callable[[T], t.Any]]=None,
              on_failure: t.Optional[t.Callable[[t.Any], t.Any]]=None,
    ) -> CancelableFuture[t.Any]:
        """Derive a future from this one's value or failure.

        When this future fulfills, the derived future is settled with the result
        of `on_success(value)`; when it fails, with the result of
        `on_failure(reason)`. A missing continuation passes the value or failure
        through unchanged. If a continuation raises, the derived future fails with
        that exception; if it returns a CancelableFuture, the derived future
        settles the same way that one does.

        If either future is canceled by the time this one settles, the derived
        future fails with CancellationError and no continuation is called.

        """
        _check_continuation("on_success", on_success)
        _check_continuation("on_failure", on_failure)
        return self._derive(functools.partial(_run_continuation, on_success, on_failure))

    def catch_failure(self, on_failure: t.Callable[[t.Any], t.Any]) -> CancelableFuture[t.Any]:
        "Derive a future which recovers from this one's failure with `on_failure`"
        return self.chain(None, on_failure)

    def finally_(self, on_settle: t.Callable[[], t.Any]) -> CancelableFuture[T]:
        """Derive a future which calls `on_settle` however it ends, then passes on the outcome.

        `on_settle` is called exactly once: when this future settles, or when the
        derived future is canceled, whichever comes first. If `on_settle` raises,
        the derived future fails with that exception; if it's called because of
        cancellation, the exception is raised from `request_cancellation`, or from
        `finally_` itself if this future was already canceled.

        `on_settle` must be synchronous: if it returns an awaitable, that's closed
        and treated as `on_settle` raising TypeError. Async cleanup belongs in a
        cancel handler, whose completion `request_cancellation` returns.

        """
        _check_continuation("on_settle", on_settle)
        once = _Once(on_settle)
        derived = self._derive(functools.partial(_run_then_pass_through, once))
        derived.register_cancel_handler(once)
        return derived

@dataclass
class ChainLink:
    """The two-way cancellation link between a future and one future derived from it.

    `produce` is the derived future's producer, so the link holds the derived
    future's fulfill/fail capabilities. `cancel_parent` is registered as a cancel
    handler on the derived future and `cancel_derived` as one on the parent; both
    go through the other future's public `request_cancellation`.

    """
    parent: CancelableFuture[t.Any]
    deliver: Deliver
    derived: t.Optional[CancelableFuture[t.Any]] = None
    waiting: bool = True
    fulfill: t.Optional[Fulfill] = field(default=None, repr=False)
    fail: t.Optional[Fail] = field(default=None, repr=False)

    def produce(self, fulfill: Fulfill, fail: Fail, register_cancel_handler: RegisterCancelHandler) -> None:
        self.fulfill = fulfill
        self.fail = fail
        register_cancel_handler(self.cancel_parent)

    def cancel_parent(self) -> t.Optional[t.Awaitable[None]]:
        return self.parent.request_cancellation()

    def cancel_derived(self) -> t.Optional[t.Awaitable[None]]:
        if not self.waiting:
            # the derived future already has the parent's outcome; it's on its own now
            return None
        assert self.derived is not None
        return self.derived.request_cancellation()

    def parent_settled(self, result: Outcome[t.Any]) -> None:
        self.waiting = False
        assert self.derived is not None and self.fulfill is not None and self.fail is not None
        if self.parent.is_canceled or self.derived.is_canceled:
            self.fail(CancellationError())
            return
        self.deliver(result, self.fulfill, self.fail)

def _run_continuation(
        on_success: t.Optional[t.Callable[[t.Any], t.Any]],
        on_failure: t.Optional[t.Callable[[t.Any], t.Any]],
        result: Outcome[t.Any], fulfill: Fulfill, fail: Fail,
) -> None:
    if isinstance(result, Value):
        continuation, arg = on_success, result.value
    else:
        continuation, arg = on_failure, reason_of(result.error)
    if continuation is None:
        _pass_through(result, fulfill, fail)
        return
    try:
        ret = continuation(arg)
    except Exception as e:
        fail(e)
    else:
        fulfill(ret)

def _run_then_pass_through(once: _Once, result: Outcome[t.Any], fulfill: Fulfill, fail: Fail) -> None:
    try:
        once()
    except Exception as e:
        fail(e)
    else:
        _pass_through(result, fulfill, fail)

def _pass_through(result: Outcome[t.Any], fulfill: Fulfill, fail: Fail) -> None:
    if isinstance(result, Value):
        fulfill(result.value)
    else:
        fail(result.error)

class _Once:
    """Calls on_settle the first time it's called, and never again

    on_settle has to be synchronous. Nothing would await an awaitable it
    returned when it's called as a late cancel handler, so we refuse them
    everywhere.

    """
    def __init__(self, func: t.Callable[[], t.Any]) -> None:
        self.func = func
        self.called = False

    def __call__(self) -> None:
        if self.called:
            return
        self.called = True
        ret = self.func()
        if inspect.isawaitable(ret):
            if inspect.iscoroutine(ret):
                ret.close()
            raise TypeError("on_settle returned an awaitable; register async cleanup "
                            "with register_cancel_handler instead", ret)
