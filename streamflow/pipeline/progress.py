"""
Rich progress display driven by pipeline events.
"""

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from ..utils.logging import console
from .events import EventBus, EventType, StageEvent


class ProgressObserver:
    """
    Shows one progress row per stage, counting the chunks delivered into it.

    Usage:
        with ProgressObserver(pipeline.events, total=expected_chunks):
            result = await pipeline.run()
    """

    def __init__(self, events: EventBus, total: int | None = None):
        self.events = events
        self.total = total
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed} chunks"),
            TimeElapsedColumn(),
            TextColumn("{task.fields[extra]}"),
            console=console,
        )
        self._tasks: dict[str, TaskID] = {}
        self._saturations: dict[str, int] = {}
        self._unsubscribe = None

    def __enter__(self) -> "ProgressObserver":
        self.progress.start()
        self._unsubscribe = self.events.subscribe(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.progress.stop()

    def _task_for(self, stage: str) -> TaskID:
        if stage not in self._tasks:
            self._tasks[stage] = self.progress.add_task(
                f"[cyan]{stage}", total=self.total, extra=""
            )
        return self._tasks[stage]

    def __call__(self, event: StageEvent) -> None:
        task = self._task_for(event.stage)
        if event.type is EventType.CHUNK:
            self.progress.advance(task)
        elif event.type is EventType.SATURATED:
            self._saturations[event.stage] = self._saturations.get(event.stage, 0) + 1
            self.progress.update(task, extra=f"⏸{self._saturations[event.stage]}")
        elif event.type is EventType.COMPLETED:
            self.progress.update(task, description=f"[green]{event.stage}")
            if self.total is None:
                completed = next(t.completed for t in self.progress.tasks if t.id == task)
                self.progress.update(task, total=completed)
        elif event.type is EventType.ERRORED:
            self.progress.update(task, description=f"[bold red]{event.stage}")
        elif event.type is EventType.CANCELLED:
            self.progress.update(task, description=f"[yellow]{event.stage}")
