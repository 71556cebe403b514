"""Integration tests for the worker pool."""

from __future__ import annotations

import asyncio
import gc
import logging

import pytest

from normandy.engine.pool import Pool, PoolState
from normandy.engine.protocol import SHUTDOWN
from normandy.plan.request import HttpMethod, RequestDescriptor

BASE_URL = "http://example.test"


def _get(path: str) -> RequestDescriptor:
    return RequestDescriptor(method=HttpMethod.GET, path=path)


async def _collect(pool: Pool, count: int, timeout: float = 5.0) -> list:
    async def _gather() -> list:
        return [await pool.next_result() for _ in range(count)]

    return await asyncio.wait_for(_gather(), timeout=timeout)


@pytest.mark.timeout(30)
class TestPoolLifecycle:
    async def test_rejects_zero_workers(self, recording_executor):
        with pytest.raises(ValueError, match="worker_count"):
            Pool(0, BASE_URL, executor=recording_executor)

    def test_requires_running_loop(self, recording_executor):
        with pytest.raises(RuntimeError):
            Pool(1, BASE_URL, executor=recording_executor)

    async def test_spawns_workers(self, recording_executor):
        pool = Pool(3, BASE_URL, executor=recording_executor)
        assert pool.worker_count == 3
        assert pool.state is PoolState.RUNNING
        await pool.shutdown()
        assert pool.state is PoolState.TERMINATED
        assert all(task.done() for task in pool.worker_tasks)

    async def test_zero_requests_then_shutdown(self, recording_executor):
        pool = Pool(2, BASE_URL, executor=recording_executor)

        await asyncio.wait_for(pool.shutdown(), timeout=2.0)

        assert await asyncio.wait_for(pool.next_result(), timeout=1.0) is None
        assert recording_executor.calls == []

    async def test_shutdown_is_idempotent(self, recording_executor):
        pool = Pool(2, BASE_URL, executor=recording_executor)
        await pool.shutdown()
        await pool.shutdown()
        assert pool.state is PoolState.TERMINATED

    async def test_submit_after_shutdown_is_rejected(self, recording_executor):
        pool = Pool(1, BASE_URL, executor=recording_executor)
        await pool.shutdown()

        assert await pool.submit(_get("/late")) is False
        assert pool.submitted_count == 0
        assert await pool.next_result() is None

    async def test_shutdown_finishes_queued_requests(self, executor_factory):
        executor = executor_factory(delays={f"/{i}": 0.01 for i in range(6)})
        pool = Pool(2, BASE_URL, executor=executor)
        for i in range(6):
            await pool.submit(_get(f"/{i}"))

        await pool.shutdown()

        results = await _collect(pool, 6)
        assert all(r is not None for r in results)
        assert await pool.next_result() is None
        assert pool.dropped_count == 0

    async def test_shutdown_sentinel_ahead_of_sends_stops_every_worker(self, recording_executor):
        pool = Pool(3, BASE_URL, executor=recording_executor)
        await pool._commands.put(SHUTDOWN)
        for i in range(3):
            await pool.submit(_get(f"/{i}"))

        _done, pending = await asyncio.wait(pool.worker_tasks, timeout=2.0)
        assert not pending

        await pool.shutdown()
        assert pool.dropped_count == 3
        assert recording_executor.calls == []

    async def test_owned_executor_closed_but_injected_one_is_not(self, recording_executor):
        pool = Pool(1, BASE_URL, executor=recording_executor)
        await pool.shutdown()
        assert recording_executor.closed is False

    async def test_context_manager_shuts_down(self, recording_executor):
        async with Pool(2, BASE_URL, executor=recording_executor) as pool:
            await pool.submit(_get("/a"))
            assert (await pool.next_result()) is not None

        assert pool.state is PoolState.TERMINATED

    async def test_shutdown_with_full_buffer_warns_and_waits_for_consumer(
        self,
        recording_executor,
        caplog: pytest.LogCaptureFixture,
        monkeypatch: pytest.MonkeyPatch,
    ):
        monkeypatch.setattr(logging.getLogger("normandy"), "propagate", True)
        pool = Pool(1, BASE_URL, executor=recording_executor, result_buffer=1)
        for i in range(3):
            await pool.submit(_get(f"/{i}"))
        await asyncio.sleep(0.05)

        with caplog.at_level(logging.WARNING, logger="normandy.engine.pool"):
            stopping = asyncio.create_task(pool.shutdown())
            await asyncio.sleep(0.05)

        assert any("may wait" in record.getMessage() for record in caplog.records)
        assert not stopping.done()

        results = await _collect(pool, 3)
        await asyncio.wait_for(stopping, timeout=2.0)

        assert all(r is not None for r in results)
        assert pool.state is PoolState.TERMINATED

    async def test_cancelled_shutdown_still_closes_owned_client(self, echo_server: str):
        pool = Pool(1, echo_server)
        await pool.submit(_get("/delay?delay=2"))
        await asyncio.sleep(0.2)
        assert pool._executor.is_open

        stopping = asyncio.create_task(pool.shutdown())
        await asyncio.sleep(0.05)
        stopping.cancel()
        with pytest.raises(asyncio.CancelledError):
            await stopping

        assert not pool._executor.is_open
        assert pool.state is PoolState.TERMINATED
        assert all(task.done() for task in pool.worker_tasks)

    async def test_context_manager_error_unblocks_full_buffer(self, recording_executor):
        with pytest.raises(RuntimeError, match="driver failed"):
            async with Pool(2, BASE_URL, executor=recording_executor, result_buffer=1) as pool:
                for i in range(5):
                    await pool.submit(_get(f"/{i}"))
                await asyncio.sleep(0.05)
                raise RuntimeError("driver failed")

        assert pool.state is PoolState.TERMINATED
        assert all(task.done() for task in pool.worker_tasks)

    async def test_dropped_pool_stops_its_workers(self, executor_factory):
        executor = executor_factory(delays={"/slow": 0.05})
        pool = Pool(3, BASE_URL, executor=executor)
        for _ in range(10):
            await pool.submit(_get("/slow"))
        tasks = pool.worker_tasks

        del pool
        gc.collect()

        _done, pending = await asyncio.wait(tasks, timeout=2.0)
        assert not pending
        # In-flight requests finish, queued ones are abandoned.
        assert len(executor.calls) < 10


@pytest.mark.timeout(30)
class TestPoolDispatch:
    @pytest.mark.parametrize("workers", [1, 2, 4])
    @pytest.mark.parametrize("count", [0, 1, 7])
    async def test_every_submission_yields_one_result(self, recording_executor, workers, count):
        async with Pool(workers, BASE_URL, executor=recording_executor) as pool:
            for i in range(count):
                assert await pool.submit(_get(f"/{i}"))
            results = await _collect(pool, count)

        assert len(results) == count
        assert all(r is not None and r.ok for r in results)
        assert pool.submitted_count == count
        assert await pool.next_result() is None

    async def test_no_request_processed_twice(self, executor_factory):
        paths = [f"/item/{i}" for i in range(60)]
        executor = executor_factory(delays={p: (i % 3) * 0.002 for i, p in enumerate(paths)})

        async with Pool(4, BASE_URL, executor=executor) as pool:
            for path in paths:
                await pool.submit(_get(path))
            results = await _collect(pool, len(paths))

        called = [descriptor.path for descriptor, _ in executor.calls]
        assert sorted(called) == sorted(paths)
        assert sorted(r.url for r in results) == sorted(f"{BASE_URL}{p}" for p in paths)

    async def test_work_is_shared_between_workers(self, executor_factory):
        executor = executor_factory(delays={"/w": 0.02})

        async with Pool(4, BASE_URL, executor=executor) as pool:
            for _ in range(8):
                await pool.submit(_get("/w"))
            results = await _collect(pool, 8)

        assert len({r.worker_id for r in results}) > 1

    async def test_results_arrive_in_completion_order(self, executor_factory):
        executor = executor_factory(delays={"/slow": 0.3})

        async with Pool(4, BASE_URL, executor=executor) as pool:
            await pool.submit(_get("/slow"))
            for i in range(3):
                await pool.submit(_get(f"/fast/{i}"))
            results = await _collect(pool, 4)

        assert results[-1].url == f"{BASE_URL}/slow"
        assert all("/fast/" in r.url for r in results[:3])

    async def test_post_reaches_executor_unchanged(self, recording_executor):
        request = RequestDescriptor(
            method=HttpMethod.POST,
            path="/items",
            headers=(("Content-Type", "application/json"),),
            body=b'{"a":1}',
        )

        async with Pool(1, BASE_URL, executor=recording_executor) as pool:
            await pool.submit(request)
            await _collect(pool, 1)

        (sent, base_url), = recording_executor.calls
        assert base_url == BASE_URL
        assert sent.header_map["Content-Type"] == "application/json"
        assert list(sent.header_map.items()) == [("Content-Type", "application/json")]
        assert sent.body == b'{"a":1}'

    async def test_executor_rejection_is_a_failed_result(self, executor_factory):
        executor = executor_factory(failures={"/opt": NotImplementedError("OPTIONS")})

        async with Pool(2, BASE_URL, executor=executor) as pool:
            await pool.submit(RequestDescriptor(method=HttpMethod.OPTIONS, path="/opt"))
            await pool.submit(_get("/ok"))
            results = await _collect(pool, 2)

        outcomes = sorted((r.ok, r.error or "") for r in results)
        assert outcomes == [(False, "NotImplementedError: OPTIONS"), (True, "")]

    async def test_bounded_buffer_applies_backpressure(self, recording_executor):
        async with Pool(1, BASE_URL, executor=recording_executor, result_buffer=1) as pool:
            for i in range(3):
                await pool.submit(_get(f"/{i}"))
            await asyncio.sleep(0.05)

            # One result buffered, one worker blocked delivering the next.
            assert len(recording_executor.calls) == 2

            results = await _collect(pool, 3)

        assert [r.url for r in results] == [f"{BASE_URL}/{i}" for i in range(3)]


@pytest.mark.timeout(30)
class TestPoolOverHttp:
    async def test_delayed_server_scenario(self, echo_server: str):
        async with Pool(2, echo_server) as pool:
            for _ in range(5):
                await pool.submit(_get("/delay?delay=0.01"))
            results = await _collect(pool, 5)

        assert len(results) == 5
        assert all(r.ok and r.status_code == 200 for r in results)
        assert all(r.latency_ms >= 10.0 for r in results)

    async def test_unreachable_host_yields_failed_result(self):
        async with Pool(1, "http://127.0.0.1:1", request_timeout=2.0) as pool:
            await pool.submit(_get("/nothing"))
            (first,) = await _collect(pool, 1)

            assert not first.ok
            assert first.error
            assert pool.state is PoolState.RUNNING

            await pool.submit(_get("/again"))
            (second,) = await _collect(pool, 1)
            assert not second.ok

    async def test_error_status_is_a_successful_transport(self, echo_server: str):
        async with Pool(1, echo_server) as pool:
            await pool.submit(_get("/error?status=500"))
            (result,) = await _collect(pool, 1)

        assert result.ok
        assert result.status_code == 500
