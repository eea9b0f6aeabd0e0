"""
Configuration classes and data structures for the pipeline framework.
"""

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, PositiveInt


class StageOptions(BaseModel):
    """Constructor options shared by every stage.

    Loaded from config files and passed on as ``Stage(**options.stage_kwargs())``.
    ``write_concurrency`` only applies to sinks and is dropped unless ``include_concurrency`` is set.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    high_water_mark: PositiveInt | None = None
    object_mode: bool = False
    write_concurrency: PositiveInt | None = None

    def stage_kwargs(self, include_concurrency: bool = False) -> dict:
        kwargs = self.model_dump(exclude_none=True)
        if not include_concurrency:
            kwargs.pop("write_concurrency", None)
        return kwargs


@dataclass
class StageStats:
    """Statistics for a single stage."""

    chunks_in: int = 0  # accepted by write()/push()
    chunks_out: int = 0  # pulled downstream, or delivered by a sink
    saturations: int = 0


@dataclass
class PipelineResult:
    """Result of pipeline execution."""

    success: bool
    elapsed_time: float = 0.0
    error: BaseException | None = None  # root cause when not successful
    failed_stage: str | None = None  # None for external cancellation
    secondary_errors: list[BaseException] = field(default_factory=list)
    stage_stats: dict[str, StageStats] = field(default_factory=dict)

    @property
    def aborted(self) -> bool:
        return not self.success

    @property
    def error_message(self) -> str | None:
        return None if self.error is None else str(self.error)

    def raise_for_error(self) -> None:
        """Re-raise the root cause if the pipeline failed."""
        if self.error is not None:
            raise self.error
