"""
Main Pipeline class for multi-stage streaming.
"""

import asyncio
import time
from collections import Counter
from itertools import pairwise

from ..utils.logging import get_logger
from .base import Stage, StageState
from .cancellation import CancelToken
from .config import PipelineResult
from .errors import CancellationFault, ProtocolViolation
from .events import EventBus
from .pipe import Pipe, check_modes
from .sink import Sink
from .source import Source
from .transform import Transform

logger = get_logger(__name__)


class Pipeline:
    """
    Streaming pipeline.

    The pipeline moves data through:
    Source -> Transform[0] -> Transform[1] -> ... -> Sink

    Every adjacent pair is connected by a Pipe and all pipes run concurrently, so data
    streams through the whole chain while backpressure propagates from the sink back to
    the source. The first failure anywhere (a stage erroring or being cancelled, a pipe
    failing, or the cancel token firing) becomes the root cause; every other stage is
    then cancelled and the remaining pipes are stopped at their next suspension point.
    """

    def __init__(
        self,
        source: Source,
        stages: list[Transform],
        sink: Sink,
        *,
        name: str = "pipeline",
        cancel_token: CancelToken | None = None,
        timeout: float | None = None,
        events: EventBus | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            source: Data source.
            stages: Transforms applied in order, may be empty.
            sink: Final consumer.
            name: Display name used in logs.
            cancel_token: External cancellation handle. Signalling it stops the pipeline.
            timeout: Seconds after which the cancel token is signalled automatically.
            events: Bus receiving every stage's lifecycle events.
        """
        self.source = source
        self.stages = list(stages)
        self.sink = sink
        self.name = name
        self.cancel_token = cancel_token or CancelToken()
        self.timeout = timeout
        self.events = events or EventBus()

        chain = self.all_stages
        if len({id(stage) for stage in chain}) != len(chain):
            raise ProtocolViolation("A stage can only appear once in a pipeline")
        for upstream, downstream in pairwise(chain):
            check_modes(upstream, downstream)
        self.stage_names = _unique_names(chain)

        self.pipes: list[Pipe] = []
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._root_error: BaseException | None = None
        self._failed_stage: str | None = None
        self._secondary_errors: list[BaseException] = []
        self._abort_task: asyncio.Task | None = None

    @classmethod
    def chain(cls, *stages: Stage, **kwargs) -> "Pipeline":
        """Build a pipeline from ``source, *transforms, sink``."""
        if len(stages) < 2:
            raise ValueError("A pipeline needs at least a source and a sink")
        source, *transforms, sink = stages
        return cls(source, transforms, sink, **kwargs)  # type: ignore[arg-type]

    @property
    def all_stages(self) -> list[Stage]:
        return [self.source, *self.stages, self.sink]

    def name_of(self, stage: Stage) -> str:
        """Name of ``stage`` in results, made unique within this pipeline."""
        for candidate, name in zip(self.all_stages, self.stage_names):
            if candidate is stage:
                return name
        return stage.name

    def cancel(self, reason=None) -> bool:
        """Signal the pipeline's cancel token."""
        return self.cancel_token.cancel(reason)

    async def run(self) -> PipelineResult:
        """
        Run the pipeline until every stage completed or the first failure was handled.

        Returns:
            PipelineResult with the outcome, root cause and per-stage statistics.
        """
        if self._started:
            raise ProtocolViolation(f"Pipeline '{self.name}' can only be run once")
        self._started = True
        start_time = time.monotonic()
        stages = self.all_stages

        cleanups = []
        for stage in stages:
            stage.attach(self.events)
            cleanups.append(stage.add_terminal_listener(self._on_stage_terminal))
        timer = self.cancel_token.cancel_after(self.timeout) if self.timeout is not None else None

        try:
            cleanups.append(self.cancel_token.add_callback(self._on_cancel))
            # the token may already have fired
            if self._root_error is None:
                for stage in stages:
                    stage.start()
                for upstream, downstream in pairwise(stages):
                    self.pipes.append(
                        Pipe(upstream, downstream, self.events, on_failure=self._on_pipe_failure)  # type: ignore[arg-type]
                    )
                self._tasks = [
                    asyncio.create_task(pipe.run(), name=pipe.name) for pipe in self.pipes
                ]
                logger.debug(f"Pipeline '{self.name}' started {len(self.pipes)} pipes")
                await asyncio.wait(self._tasks)
            for task in self._tasks:
                if not task.cancelled() and task.exception() is not None:
                    self._fail(task.exception(), None)
            if self._abort_task is not None:
                await self._abort_task
            await self._wait_released()
        except asyncio.CancelledError:
            logger.warning(f"Pipeline '{self.name}' was cancelled, shutting down...")
            self._fail(CancellationFault(f"Pipeline '{self.name}' was cancelled"), None)
            await self._shutdown()
            raise
        except Exception as e:
            # setup errors (e.g. restarting a finished stage) are bugs in the caller
            self._fail(e, None)
            await self._shutdown()
            raise
        finally:
            if timer is not None:
                timer.cancel()
            for cleanup in cleanups:
                cleanup()

        return self._result(time.monotonic() - start_time)

    def _on_stage_terminal(self, stage: Stage) -> None:
        if stage.state in (StageState.ERRORED, StageState.CANCELLED):
            self._fail(stage.error or CancellationFault("cancelled", stage=stage.name), stage)

    def _on_pipe_failure(self, error: BaseException, origin: Stage) -> None:
        self._fail(error, origin)

    def _on_cancel(self, reason: CancellationFault) -> None:
        self._fail(reason, None)

    def _fail(self, error: BaseException, stage: Stage | None) -> None:
        if self._root_error is not None:
            if not self._is_consequence(error):
                logger.warning(
                    f"Pipeline '{self.name}': secondary fault {type(error).__name__}: {error}"
                )
                self._secondary_errors.append(error)
            return

        self._root_error = error
        self._failed_stage = self.name_of(stage) if stage is not None else None
        origin = self._failed_stage or "external cancellation"
        if isinstance(error, CancellationFault) and stage is None:
            logger.warning(f"Pipeline '{self.name}' cancelled: {error}")
        else:
            logger.error(f"Pipeline '{self.name}' failed at {origin}: {error}")
        self._abort_task = asyncio.get_running_loop().create_task(self._abort(error))

    def _is_consequence(self, error: BaseException) -> bool:
        root = self._root_error
        if error is root or any(error is e for e in self._secondary_errors):
            return True
        return isinstance(error, CancellationFault) and error.__cause__ is root

    async def _abort(self, root: BaseException) -> None:
        """Cancel every stage that is still running, then stop the pipes."""
        origin = self._failed_stage or "external cancellation"
        for stage in self.all_stages:
            if stage.terminated:
                continue
            fault = CancellationFault(f"cancelled after failure in {origin}", stage=stage.name)
            fault.__cause__ = root
            await stage.cancel(fault)
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def _shutdown(self) -> None:
        if self._abort_task is not None:
            await asyncio.shield(self._abort_task)
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        await self._wait_released()

    async def _wait_released(self) -> None:
        await asyncio.gather(*(stage.wait_released() for stage in self.all_stages))

    def _result(self, elapsed: float) -> PipelineResult:
        secondary = list(self._secondary_errors)
        for holder in [*self.all_stages, *self.pipes]:
            for error in holder.secondary_errors:
                if error is not self._root_error and all(error is not e for e in secondary):
                    secondary.append(error)

        success = self._root_error is None
        if success:
            logger.info(f"Pipeline '{self.name}' completed in {elapsed:.1f}s")
        return PipelineResult(
            success=success,
            elapsed_time=elapsed,
            error=self._root_error,
            failed_stage=self._failed_stage,
            secondary_errors=secondary,
            stage_stats={
                name: stage.stats for stage, name in zip(self.all_stages, self.stage_names)
            },
        )


def _unique_names(stages: list[Stage]) -> list[str]:
    counts = Counter(stage.name for stage in stages)
    seen: Counter[str] = Counter()
    names = []
    for stage in stages:
        if counts[stage.name] > 1:
            seen[stage.name] += 1
            names.append(f"{stage.name}#{seen[stage.name]}")
        else:
            names.append(stage.name)
    return names
