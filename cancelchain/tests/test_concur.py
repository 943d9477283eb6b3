from cancelchain import CancelableFuture, CancellationError, InvalidProducer, start, delay, gather, run_all
from cancelchain.outcome import Value
from cancelchain.tests.trio_test_case import TrioTestCase
from cancelchain.tests.utils import Capture, outcome_of
import trio
import trio.testing

class MyException(Exception):
    pass

class TestStart(TrioTestCase):
    async def test_fulfills(self) -> None:
        async def compute(a: int, b: int) -> int:
            await trio.sleep(0)
            return a + b
        self.assertEqual(await start(self.nursery, compute, 1, 2), 3)

    async def test_fails(self) -> None:
        exn = MyException("task broke")
        async def broken() -> None:
            await trio.sleep(0)
            raise exn
        with self.assertRaises(MyException) as cm:
            await start(self.nursery, broken)
        self.assertIs(cm.exception, exn)

    async def test_cancel_while_running(self) -> None:
        progress = []
        async def slow() -> None:
            progress.append("started")
            await trio.sleep_forever()
        fut = start(self.nursery, slow)
        await trio.testing.wait_all_tasks_blocked()
        self.assertEqual(progress, ["started"])
        fut.request_cancellation()
        with trio.fail_after(1):
            with self.assertRaises(CancellationError):
                await fut
        # the task itself has exited too
        await trio.testing.wait_all_tasks_blocked()
        self.assertEqual(len(self.nursery.child_tasks), 0)

    async def test_canceled_before_running(self) -> None:
        called = []
        async def never() -> None:
            called.append(True)
        fut = start(self.nursery, never)
        fut.request_cancellation()
        await trio.testing.wait_all_tasks_blocked()
        with self.assertRaises(CancellationError):
            await fut
        self.assertEqual(called, [])

    async def test_invalid_async_fn(self) -> None:
        with self.assertRaises(InvalidProducer):
            start(self.nursery, 'not a function') # type: ignore

    async def test_cancelled_from_outside(self) -> None:
        async with trio.open_nursery() as nursery:
            fut = start(nursery, trio.sleep_forever)
            await trio.testing.wait_all_tasks_blocked()
            nursery.cancel_scope.cancel()
        with self.assertRaises(CancellationError):
            await fut
        # nobody asked for this future to be canceled; its work was just stopped
        self.assertFalse(fut.is_canceled)

class TestDelay(TrioTestCase):
    async def test_value(self) -> None:
        self.assertEqual(await delay(self.nursery, 0.01, "value"), "value")
        self.assertIsNone(await delay(self.nursery, 0))

    async def test_cancel_stops_timer(self) -> None:
        fut = delay(self.nursery, 100, "never")
        fut.request_cancellation()
        with trio.fail_after(1):
            with self.assertRaises(CancellationError):
                await fut

    async def test_pipeline(self) -> None:
        "A fetch, process, display pipeline made of timers, canceled partway through"
        shown = []
        fetched = delay(self.nursery, 0.01, "data")
        processed = fetched.chain(lambda data: delay(self.nursery, 100, data.upper()))
        displayed = processed.chain(shown.append)
        self.assertEqual(await fetched, "data")
        await trio.testing.wait_all_tasks_blocked()
        displayed.request_cancellation()
        with trio.fail_after(1):
            with self.assertRaises(CancellationError):
                await displayed
        self.assertEqual(shown, [])
        self.assertTrue(processed.is_canceled)
        # fetched had already finished; it stays fulfilled
        self.assertEqual(await fetched, "data")

class TestGather(TrioTestCase):
    async def test_order(self) -> None:
        futs = [delay(self.nursery, 0.03, 1), delay(self.nursery, 0.01, 2), CancelableFuture.fulfilled(3)]
        self.assertEqual(await gather(futs), [1, 2, 3])

    async def test_empty(self) -> None:
        self.assertEqual(outcome_of(gather([])), Value([]))

    async def test_failure(self) -> None:
        exn = MyException()
        cap = Capture()
        gathered = gather([CancelableFuture(cap), CancelableFuture.failed(exn)])
        with self.assertRaises(MyException) as cm:
            await gathered
        self.assertIs(cm.exception, exn)
        # the rest keep running
        cap.fulfill(1)

    async def test_cancel_cancels_inputs(self) -> None:
        futs = [delay(self.nursery, 100), CancelableFuture(Capture())]
        gathered = gather(futs)
        gathered.request_cancellation()
        self.assertTrue(all(fut.is_canceled for fut in futs))
        with trio.fail_after(1):
            with self.assertRaises(CancellationError):
                await gathered

    async def test_canceled_input(self) -> None:
        fut = CancelableFuture(Capture())
        gathered = gather([fut, CancelableFuture.fulfilled(1)])
        fut.request_cancellation()
        with self.assertRaises(CancellationError):
            await gathered

class TestRunAll(TrioTestCase):
    async def test_run_all(self) -> None:
        async def one() -> int:
            await trio.sleep(0.02)
            return 1
        async def two() -> int:
            await trio.sleep(0.01)
            return 2
        self.assertEqual(await run_all(self.nursery, [one, two]), [1, 2])

    async def test_run_all_failure(self) -> None:
        async def broken() -> int:
            raise MyException()
        with self.assertRaises(MyException):
            await run_all(self.nursery, [broken])
