from __future__ import annotations

from pathlib import Path

import pytest

from app_config import load_app_config, parse_time_limit


def test_load_app_config_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    cfg = load_app_config(str(tmp_path / "missing.yaml"))

    assert cfg.runtime.safety_margin_minutes == 15
    assert cfg.runtime.allowed_root.endswith("md_projects")
    assert cfg.slurm.time_limit == "24:00:00"
    assert cfg.gmx.binary == "gmx"


def test_load_app_config_reads_env_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "mdchain.yaml"
    config_path.write_text("gmx:\n  binary: gmx_mpi\n  ntomp: 4\n", encoding="utf-8")
    monkeypatch.setenv("MDCHAIN_CONFIG", str(config_path))

    cfg = load_app_config()

    assert cfg.gmx.binary == "gmx_mpi"
    assert cfg.gmx.ntomp == 4


def test_load_app_config_parses_slurm_section(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "runtime:",
                f"  allowed_root: {tmp_path / 'projects'}",
                "  safety_margin_minutes: 30",
                "slurm:",
                "  partition: amilan",
                "  cpus_per_task: 32",
                "  time_limit: 1-00:00:00",
                "  module_loads:",
                "    - gcc/11.2.0",
                "    - gromacs/2024.2",
            ]
        ),
        encoding="utf-8",
    )

    cfg = load_app_config(str(config_path))

    assert cfg.runtime.safety_margin_minutes == 30
    assert cfg.slurm.partition == "amilan"
    assert cfg.slurm.cpus_per_task == 32
    assert cfg.slurm.module_loads == ["gcc/11.2.0", "gromacs/2024.2"]


def test_load_app_config_accepts_unquoted_time_limit(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("slurm:\n  time_limit: 12:00:00\n", encoding="utf-8")

    assert load_app_config(str(config_path)).slurm.time_limit == "12:00:00"


def test_load_app_config_rejects_invalid_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("runtime: [", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid YAML config"):
        load_app_config(str(config_path))


def test_load_app_config_rejects_relative_allowed_root(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("runtime:\n  allowed_root: ./runs\n", encoding="utf-8")
    with pytest.raises(ValueError, match="runtime.allowed_root must be an absolute path"):
        load_app_config(str(config_path))


def test_load_app_config_accepts_mount_point_allowed_root(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("runtime:\n  allowed_root: /mnt/c/md_projects\n", encoding="utf-8")

    assert load_app_config(str(config_path)).runtime.allowed_root == str(Path("/mnt/c/md_projects").resolve())


def test_load_app_config_rejects_margin_longer_than_limit(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "runtime:\n  safety_margin_minutes: 60\nslurm:\n  time_limit: '00:30:00'\n",
        encoding="utf-8",
    )
    with pytest.raises(ValueError, match="slurm.time_limit must exceed"):
        load_app_config(str(config_path))


def test_load_app_config_rejects_boolean_counts(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("slurm:\n  nodes: true\n", encoding="utf-8")
    with pytest.raises(ValueError, match="slurm.nodes must be an integer"):
        load_app_config(str(config_path))


@pytest.mark.parametrize(
    ("text", "seconds"),
    [("24:00:00", 86400), ("1-02:00:00", 93600), ("00:45:30", 2730)],
)
def test_parse_time_limit(text: str, seconds: int) -> None:
    assert parse_time_limit(text) == seconds


@pytest.mark.parametrize("text", ["90", "10:61:00", "abc"])
def test_parse_time_limit_rejects_bad_values(text: str) -> None:
    with pytest.raises(ValueError):
        parse_time_limit(text)
