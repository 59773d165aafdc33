import asyncio
import threading
import unittest

import numpy as np

from detect_kit.errors import InferenceError
from detect_kit.runner import AsyncSession

from fakes import ConcurrencyProbe, FailingRunner


class _BarrierRunner:
    def __init__(self, barrier: threading.Barrier):
        self.barrier = barrier

    def run(self, feeds):
        self.barrier.wait()
        return {"ok": np.ones((1,), dtype=np.float32)}


class _ListRunner:
    def run(self, feeds):
        return [np.zeros((1,))]


class TestAsyncSession(unittest.IsolatedAsyncioTestCase):
    async def test_outputs_are_arrays(self) -> None:
        class Echo:
            def run(self, feeds):
                return {"y": [1, 2, 3]}

        with AsyncSession(Echo(), name="echo") as session:
            out = await session.run({"x": np.zeros((1,))})
        self.assertIsInstance(out["y"], np.ndarray)
        self.assertEqual(out["y"].tolist(), [1, 2, 3])

    async def test_runner_errors_are_wrapped(self) -> None:
        session = AsyncSession(FailingRunner("bad input shape"), name="detector")
        self.addCleanup(session.close)
        with self.assertRaises(InferenceError) as ctx:
            await session.run({"x": np.zeros((1,))})
        self.assertIn("detector", str(ctx.exception))
        self.assertIn("bad input shape", str(ctx.exception))
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    async def test_non_mapping_output(self) -> None:
        session = AsyncSession(_ListRunner())
        self.addCleanup(session.close)
        with self.assertRaises(InferenceError):
            await session.run({})

    async def test_calls_are_serialized_per_session(self) -> None:
        probe = ConcurrencyProbe(delay_s=0.02)
        session = AsyncSession(probe, name="probe")
        self.addCleanup(session.close)
        results = await asyncio.gather(*(session.run({"x": np.array([i])}) for i in range(6)))
        self.assertEqual(probe.max_active, 1)
        self.assertEqual(probe.order, list(range(6)))
        self.assertEqual([int(r["y"][0]) for r in results], list(range(6)))

    async def test_max_concurrency_allows_parallel_calls(self) -> None:
        probe = ConcurrencyProbe(delay_s=0.1)
        session = AsyncSession(probe, name="probe", max_concurrency=2)
        self.addCleanup(session.close)
        await asyncio.gather(*(session.run({"x": np.array([i])}) for i in range(2)))
        self.assertEqual(probe.max_active, 2)

    async def test_sessions_run_independently(self) -> None:
        # Both calls must be inside `run` at once for the barrier to open.
        barrier = threading.Barrier(2, timeout=5.0)
        a = AsyncSession(_BarrierRunner(barrier), name="a")
        b = AsyncSession(_BarrierRunner(barrier), name="b")
        self.addCleanup(a.close)
        self.addCleanup(b.close)
        out_a, out_b = await asyncio.gather(a.run({}), b.run({}))
        self.assertEqual(out_a["ok"].tolist(), [1.0])
        self.assertEqual(out_b["ok"].tolist(), [1.0])

    async def test_closed_session(self) -> None:
        session = AsyncSession(ConcurrencyProbe(0.0))
        session.close()
        self.assertTrue(session.closed)
        session.close()
        with self.assertRaises(InferenceError):
            await session.run({"x": np.array([1])})

    def test_run_sync(self) -> None:
        session = AsyncSession(ConcurrencyProbe(0.0), name="probe")
        self.addCleanup(session.close)
        out = session.run_sync({"x": np.array([7])})
        self.assertEqual(out["y"].tolist(), [7])
        with self.assertRaises(InferenceError):
            AsyncSession(FailingRunner()).run_sync({})

    def test_invalid_concurrency(self) -> None:
        with self.assertRaises(ValueError):
            AsyncSession(ConcurrencyProbe(), max_concurrency=0)


if __name__ == "__main__":
    unittest.main()
