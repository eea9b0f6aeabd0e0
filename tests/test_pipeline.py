import asyncio

import pytest

from streamflow.pipeline import (
    CancellationFault,
    CancelToken,
    ConsumerFault,
    DeadlineExceeded,
    ModeMismatchError,
    Pipeline,
    ProducerFault,
    ProtocolViolation,
    Sink,
    StageClosedError,
    StageState,
    Transform,
    TransformFault,
)
from streamflow.stages import CollectSink, IterableSource


class CountingSource(IterableSource):
    def __init__(self, iterable, **kwargs):
        super().__init__(iterable, **kwargs)
        self.reads = 0
        self.destroyed = 0

    async def _read(self):
        self.reads += 1
        return await super()._read()

    async def _destroy(self, error):
        self.destroyed += 1
        await super()._destroy(error)


class CountingTransform(Transform):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.destroyed = 0

    async def _destroy(self, error):
        self.destroyed += 1


class LatencySink(Sink):
    """Collects values after an artificial write latency, tracking how far the source runs ahead."""

    def __init__(self, source: CountingSource | None = None, upstream_flows=(), **kwargs):
        super().__init__(**kwargs)
        self.source = source
        self.upstream_flows = list(upstream_flows)
        self.items = []
        self.completed = 0
        self.max_lead = 0
        self.max_buffered = 0
        self.max_unaccounted = 0
        self.destroyed = 0

    async def _write(self, chunk):
        await asyncio.sleep(0)
        self.items.append(chunk)
        self.completed += 1
        if self.source is not None:
            lead = self.source.reads - self.completed
            buffered = self.input_flow.buffered_amount + sum(
                flow.buffered_amount for flow in self.upstream_flows
            )
            self.max_lead = max(self.max_lead, lead)
            self.max_buffered = max(self.max_buffered, buffered)
            self.max_unaccounted = max(self.max_unaccounted, lead - buffered)

    async def _destroy(self, error):
        self.destroyed += 1


async def endless(delay=0.01):
    i = 0
    while True:
        await asyncio.sleep(delay)
        yield i
        i += 1


def test_end_to_end_doubling():
    async def main():
        hwm = 10
        source = CountingSource(range(100_000), object_mode=True, high_water_mark=hwm)
        double = Transform(lambda x: [2 * x], object_mode=True, high_water_mark=hwm)
        sink = LatencySink(
            source,
            [double.input_flow, double.output_flow],
            object_mode=True,
            high_water_mark=hwm,
        )
        result = await Pipeline(source, [double], sink).run()

        assert result.success, result.error
        assert sink.items == [2 * i for i in range(100_000)]
        # every chunk the source ran ahead is held in one of the buffers; the extra one
        # is the final read that reported end of stream
        assert sink.max_unaccounted <= 1
        assert sink.max_buffered <= 3 * hwm
        assert sink.max_lead <= sink.max_buffered + 1
        assert result.stage_stats["LatencySink"].chunks_out == 100_000
        assert all(stage.state is StageState.COMPLETED for stage in (source, double, sink))

    asyncio.run(main())


def test_chain_and_stage_stats():
    async def main():
        source = IterableSource(range(10), object_mode=True, name="numbers")
        sink = CollectSink(object_mode=True, name="collect")
        pipeline = Pipeline.chain(
            source,
            Transform(lambda x: [x] if x % 2 else None, object_mode=True, name="odd"),
            sink,
        )
        result = await pipeline.run()
        assert result.success
        assert result.error is None and result.error_message is None
        assert sink.items == [1, 3, 5, 7, 9]
        assert result.stage_stats["numbers"].chunks_out == 10
        assert result.stage_stats["odd"].chunks_in == 10
        assert result.stage_stats["odd"].chunks_out == 5
        assert result.stage_stats["collect"].chunks_in == 5
        result.raise_for_error()

    asyncio.run(main())


def test_source_only_pipeline():
    async def main():
        sink = CollectSink(object_mode=True)
        result = await Pipeline(IterableSource("abc", object_mode=True), [], sink).run()
        assert result.success
        assert sink.items == ["a", "b", "c"]

    asyncio.run(main())


def test_transform_failure_cancels_everything():
    def fragile(x):
        if x == 3:
            raise ValueError("cannot handle 3")
        return [x]

    async def main():
        source = CountingSource(range(100), object_mode=True, name="src")
        transform = CountingTransform(fragile, object_mode=True, name="fragile")
        sink = LatencySink(object_mode=True, name="dst")
        result = await Pipeline(source, [transform], sink).run()

        assert not result.success and result.aborted
        assert isinstance(result.error, TransformFault)
        assert isinstance(result.error.__cause__, ValueError)
        assert result.failed_stage == "fragile"
        assert "cannot handle 3" in result.error_message
        assert result.error not in result.secondary_errors

        assert transform.state is StageState.ERRORED
        assert source.state is not StageState.ACTIVE
        assert sink.state in (StageState.ERRORED, StageState.CANCELLED)
        assert 3 not in sink.items
        assert source.destroyed == transform.destroyed == sink.destroyed == 1

        with pytest.raises(TransformFault):
            result.raise_for_error()

    asyncio.run(main())


def test_first_error_wins_and_later_faults_are_secondary():
    def broken():
        yield from range(3)
        raise OSError("source died at chunk 3")

    class BrittleSink(LatencySink):
        async def _destroy(self, error):
            await super()._destroy(error)
            raise RuntimeError("sink failed while releasing")

    async def main():
        source = IterableSource(broken(), object_mode=True, name="src")
        sink = BrittleSink(object_mode=True, name="dst")
        result = await Pipeline(source, [Transform(object_mode=True)], sink).run()

        assert isinstance(result.error, ProducerFault)
        assert result.failed_stage == "src"
        assert isinstance(result.error.__cause__, OSError)
        assert any(
            isinstance(e, RuntimeError) and "releasing" in str(e) for e in result.secondary_errors
        )
        assert sink.destroyed == 1

    asyncio.run(main())


@pytest.mark.parametrize(
    "source_delay, root_type, root_stage",
    [(0, ProducerFault, "src"), (0.2, ConsumerFault, "dst")],
)
def test_earliest_failure_is_the_root(source_delay, root_type, root_stage):
    async def flaky():
        for i in range(3):
            yield i
        await asyncio.sleep(source_delay)
        raise OSError("source died at chunk 3")

    class FailsAtFive(LatencySink):
        async def _write(self, chunk):
            await asyncio.sleep(0.005)
            if len(self.items) == 5:
                raise RuntimeError("sink died at chunk 5")
            await super()._write(chunk)

    async def main():
        source = IterableSource(flaky(), object_mode=True, name="src")
        split = Transform(lambda x: [x, x], object_mode=True)
        sink = FailsAtFive(object_mode=True, name="dst")
        result = await Pipeline(source, [split], sink).run()

        assert isinstance(result.error, root_type)
        assert result.failed_stage == root_stage
        assert result.error not in result.secondary_errors
        assert len(sink.items) <= 5
        assert source.state.terminal and sink.state.terminal
        assert sink.state is not StageState.COMPLETED

    asyncio.run(main())


class SlowRelease(Transform):
    def __init__(self, delay, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.started = 0
        self.released = 0

    async def _destroy(self, error):
        self.started += 1
        await asyncio.sleep(self.delay)
        self.released += 1


def test_release_finishes_when_the_caller_is_cancelled():
    async def main():
        transform = SlowRelease(0.02, object_mode=True)
        closing = asyncio.create_task(transform.cancel("stop"))
        await asyncio.sleep(0.005)
        closing.cancel()
        with pytest.raises(asyncio.CancelledError):
            await closing
        assert transform.state is StageState.CANCELLED
        await transform.wait_released()
        assert transform.started == transform.released == 1

    asyncio.run(main())


def test_release_finishes_before_run_returns():
    def broken():
        yield 0
        raise OSError("disk gone")

    async def main():
        transform = SlowRelease(0.05, object_mode=True)
        result = await Pipeline(
            IterableSource(broken(), object_mode=True), [transform], CollectSink(object_mode=True)
        ).run()
        assert isinstance(result.error, ProducerFault)
        assert transform.started == transform.released == 1
        await asyncio.sleep(0.1)
        assert transform.started == transform.released == 1

    asyncio.run(main())


def test_stage_torn_down_before_its_pipe_runs():
    def broken():
        yield from range(2)
        raise OSError("source died at chunk 2")

    async def main():
        transform = SlowRelease(0, object_mode=True)
        pipeline = Pipeline(
            IterableSource(broken(), object_mode=True), [transform], CollectSink(object_mode=True)
        )
        result = await pipeline.run()
        assert isinstance(result.error, ProducerFault)
        assert result.secondary_errors == []
        assert not any(isinstance(pipe.error, StageClosedError) for pipe in pipeline.pipes)

    asyncio.run(main())


def test_cancellations_caused_by_the_root_are_not_secondary():
    def broken():
        yield 1
        raise ValueError("boom")

    async def main():
        stages = [Transform(object_mode=True, name=f"t{i}") for i in range(3)]
        result = await Pipeline(
            IterableSource(broken(), object_mode=True), stages, CollectSink(object_mode=True)
        ).run()
        assert isinstance(result.error, ProducerFault)
        assert result.secondary_errors == []
        for stage in stages:
            assert stage.state.terminal
            assert stage.error is result.error or stage.error.__cause__ is result.error

    asyncio.run(main())


def test_teardown_runs_once_under_concurrent_triggers():
    async def main():
        source = CountingSource(endless(), object_mode=True)
        sink = LatencySink(object_mode=True)
        await asyncio.gather(
            source.cancel("downstream gone"),
            source.cancel("upstream error"),
            source.fail(ValueError("late")),
            sink.close(RuntimeError("upstream error")),
            sink.cancel("downstream gone"),
            sink.close(),
            return_exceptions=True,
        )
        assert source.destroyed == 1
        assert sink.destroyed == 1
        assert source.state is StageState.CANCELLED
        assert sink.state is StageState.ERRORED

    asyncio.run(main())


def test_cancel_token():
    async def main():
        token = CancelToken()
        source = CountingSource(endless(), object_mode=True)
        sink = LatencySink(object_mode=True)
        pipeline = Pipeline(source, [Transform(object_mode=True)], sink, cancel_token=token)
        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.05)
        assert token.cancel("user pressed stop")
        result = await asyncio.wait_for(task, 1)

        assert not result.success
        assert isinstance(result.error, CancellationFault)
        assert "user pressed stop" in str(result.error)
        assert result.failed_stage is None
        assert all(stage.state.terminal for stage in pipeline.all_stages)
        assert source.destroyed == sink.destroyed == 1
        assert len(sink.items) > 0

    asyncio.run(main())


def test_token_cancelled_before_run():
    async def main():
        token = CancelToken()
        token.cancel("not needed")
        source = CountingSource(range(10), object_mode=True)
        sink = CollectSink(object_mode=True)
        result = await Pipeline(source, [], sink, cancel_token=token).run()
        assert isinstance(result.error, CancellationFault)
        assert source.reads == 0
        assert source.state is StageState.CANCELLED
        assert sink.state is StageState.CANCELLED
        assert sink.items == []

    asyncio.run(main())


def test_timeout():
    async def main():
        source = CountingSource(endless(0.005), object_mode=True)
        sink = LatencySink(object_mode=True)
        result = await Pipeline(source, [], sink, timeout=0.05).run()
        assert isinstance(result.error, DeadlineExceeded)
        assert result.failed_stage is None
        assert source.state is StageState.CANCELLED
        assert sink.state is StageState.CANCELLED
        assert 0.04 <= result.elapsed_time < 1

    asyncio.run(main())


def test_cancelling_the_run_task():
    async def main():
        source = CountingSource(endless(), object_mode=True)
        transform = CountingTransform(object_mode=True)
        sink = LatencySink(object_mode=True)
        pipeline = Pipeline(source, [transform], sink)
        task = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0.03)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert all(stage.state.terminal for stage in pipeline.all_stages)
        assert source.destroyed == transform.destroyed == sink.destroyed == 1
        assert all(t.done() for t in pipeline._tasks)

    asyncio.run(main())


def test_pipeline_runs_once():
    async def main():
        pipeline = Pipeline(
            IterableSource([1], object_mode=True), [], CollectSink(object_mode=True)
        )
        assert (await pipeline.run()).success
        with pytest.raises(ProtocolViolation):
            await pipeline.run()

    asyncio.run(main())


def test_construction_checks():
    source = IterableSource([], object_mode=True)
    with pytest.raises(ModeMismatchError):
        Pipeline(source, [], CollectSink())

    shared = Transform(object_mode=True)
    with pytest.raises(ProtocolViolation):
        Pipeline(source, [shared, shared], CollectSink(object_mode=True))

    with pytest.raises(ValueError):
        Pipeline.chain(source)


def test_duplicate_names_are_made_unique():
    stages = [Transform(object_mode=True, name="step") for _ in range(2)]
    pipeline = Pipeline(
        IterableSource([], object_mode=True), stages, CollectSink(object_mode=True)
    )
    assert pipeline.stage_names == ["IterableSource", "step#1", "step#2", "CollectSink"]
    assert pipeline.name_of(stages[1]) == "step#2"
    # the stages themselves keep the names they were given
    assert [stage.name for stage in stages] == ["step", "step"]

    result = asyncio.run(pipeline.run())
    assert set(result.stage_stats) == set(pipeline.stage_names)
