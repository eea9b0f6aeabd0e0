import asyncio

from pydantic import BaseModel, PositiveFloat, PositiveInt
from rich.panel import Panel
from rich.table import Table

from streamflow.pipeline import (
    LoggingObserver,
    Pipeline,
    PipelineResult,
    ProgressObserver,
)
from streamflow.stages import (
    LineSplitter,
    ReaderSource,
    TextDecoder,
    TextEncoder,
    WriterSink,
    parse_transform,
)
from streamflow.utils.logging import console, get_logger

logger = get_logger(__name__)


class FileSourceConfig(BaseModel):
    path: str
    chunk_size: PositiveInt = 64 * 1024
    encoding: str = "utf-8"


class FileSinkConfig(BaseModel):
    path: str
    encoding: str = "utf-8"
    line_ending: str = "\n"


class RunConfig(BaseModel):
    source: FileSourceConfig
    sink: FileSinkConfig
    transforms: list[dict] = []

    high_water_mark: PositiveInt | None = None
    timeout: PositiveFloat | None = None
    progress: bool = False


def build_pipeline(config: RunConfig, reader, writer) -> Pipeline:
    """
    Wire ``reader -> decode -> lines -> configured transforms -> encode -> writer``.
    """
    hwm = config.high_water_mark
    stages = [
        TextDecoder(config.source.encoding, name="Decoding", writable_high_water_mark=hwm),
        LineSplitter(name="Splitting", high_water_mark=hwm),
    ]
    for transform_config in config.transforms:
        if hwm is not None:
            transform_config = {"high_water_mark": hwm, **transform_config}
        stages.append(parse_transform(transform_config))
    stages.append(
        TextEncoder(
            config.sink.encoding,
            suffix=config.sink.line_ending,
            name="Encoding",
            writable_high_water_mark=hwm,
        )
    )
    return Pipeline(
        ReaderSource(
            reader,
            chunk_size=config.source.chunk_size,
            threaded=True,
            name="Reading",
            high_water_mark=hwm,
        ),
        stages,
        WriterSink(writer, threaded=True, name="Writing", high_water_mark=hwm),
        name=f"{config.source.path} -> {config.sink.path}",
        timeout=config.timeout,
    )


async def run_pipeline(config: RunConfig) -> PipelineResult:
    reader = open(config.source.path, "rb")
    try:
        writer = open(config.sink.path, "wb")
    except OSError:
        reader.close()
        raise
    # both files are closed by their stages on termination
    try:
        pipeline = build_pipeline(config, reader, writer)
    except Exception:
        reader.close()
        writer.close()
        raise
    pipeline.events.subscribe(LoggingObserver())
    if config.progress:
        with ProgressObserver(pipeline.events):
            return await pipeline.run()
    return await pipeline.run()


def print_summary(result: PipelineResult) -> None:
    table = Table(title="Stages")
    table.add_column("Stage")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Saturations", justify="right")
    for name, stats in result.stage_stats.items():
        table.add_row(name, str(stats.chunks_in), str(stats.chunks_out), str(stats.saturations))
    console.print(table)

    if result.success:
        console.print(Panel.fit(f"[bold green]Completed[/bold green] in {result.elapsed_time:.2f}s"))
    else:
        where = result.failed_stage or "external cancellation"
        console.print(
            Panel.fit(
                f"[bold red]Failed[/bold red] at [bold]{where}[/bold]: {result.error_message}",
                border_style="red",
            )
        )
        for error in result.secondary_errors:
            console.print(f"  [dim]secondary:[/dim] {type(error).__name__}: {error}")


def main(config_paths: list[str]) -> int:
    """Run the configured pipeline. Later config files override earlier ones."""
    from streamflow.utils.loaders import deep_merge_dicts, load_config_file

    merged: dict = {}
    for path in config_paths:
        merged = deep_merge_dicts(merged, load_config_file(path))
    config = RunConfig(**merged)
    logger.info(f"Running {config.source.path} -> {config.sink.path} with {len(config.transforms)} transforms")

    result = asyncio.run(run_pipeline(config))
    console.rule("[bold]Pipeline finished[/bold]")
    print_summary(result)
    return 0 if result.success else 1

