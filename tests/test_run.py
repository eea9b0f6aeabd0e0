import sys

import pytest
import yaml

from streamflow.scripts import cli
from streamflow.scripts.run import RunConfig, main


def write_config(path, config: dict) -> str:
    path.write_text(yaml.safe_dump(config))
    return str(path)


def test_run_file_pipeline(tmp_path):
    source = tmp_path / "in.txt"
    source.write_text("hello\nworld\nfoo\nwhat\n")
    sink = tmp_path / "out.txt"
    config = write_config(
        tmp_path / "run.yaml",
        {
            "source": {"path": str(source), "chunk_size": 3},
            "sink": {"path": str(sink)},
            "transforms": [{"type": "grep", "pattern": "^[hw]"}, {"type": "upper"}],
            "high_water_mark": 2,
        },
    )
    assert main([config]) == 0
    assert sink.read_text() == "HELLO\nWORLD\nWHAT\n"


def test_later_configs_override_earlier_ones(tmp_path):
    source = tmp_path / "in.txt"
    source.write_text("b\na")
    base = write_config(
        tmp_path / "base.yaml",
        {"source": {"path": str(source)}, "sink": {"path": str(tmp_path / "unused.txt")}},
    )
    override = write_config(
        tmp_path / "override.yaml",
        {"sink": {"path": str(tmp_path / "out.txt")}, "transforms": [{"type": "number"}]},
    )
    assert main([base, override]) == 0
    assert (tmp_path / "out.txt").read_text() == "1\tb\n2\ta\n"


def test_runtime_failure_exits_non_zero(tmp_path):
    source = tmp_path / "in.bin"
    source.write_bytes(b"ok\n\xff\xfe\n")
    config = write_config(
        tmp_path / "run.yaml",
        {"source": {"path": str(source)}, "sink": {"path": str(tmp_path / "out.txt")}},
    )
    assert main([config]) == 1


def test_invalid_config(tmp_path):
    config = write_config(tmp_path / "run.yaml", {"source": {"path": "in.txt"}})
    with pytest.raises(ValueError):
        main([config])

    assert RunConfig(source={"path": "a"}, sink={"path": "b"}).transforms == []


def test_cli_dispatch(tmp_path, monkeypatch):
    source = tmp_path / "in.txt"
    source.write_text("x\n")
    config = write_config(
        tmp_path / "run.yaml",
        {"source": {"path": str(source)}, "sink": {"path": str(tmp_path / "out.txt")}},
    )
    monkeypatch.setattr(sys, "argv", ["streamflow", "run", config])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 0
    assert (tmp_path / "out.txt").read_text() == "x\n"


def test_cli_without_command(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["streamflow"])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 1
