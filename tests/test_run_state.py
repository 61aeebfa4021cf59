from __future__ import annotations

from pathlib import Path

from conftest import write_checkpoint
from md_engine.run_state import inspect_checkpoint, inspect_run_state, read_log_progress

_ENERGY_LOG = """\
Started mdrun on rank 0 Mon Jan  1 00:00:00 2026

           Step           Time
              0        0.00000

   Energies (kJ/mol)
          Angle    Proper Dih.
    1.23456e+04    2.34567e+03

           Step           Time
           5000       10.00000

Writing checkpoint, step 7500 at Mon Jan  1 01:00:00 2026

Step 7520: Run time exceeded 0.990 hours, will terminate the run within 20 steps
"""


def test_read_log_progress_takes_highest_step(tmp_path: Path) -> None:
    (tmp_path / "md.log").write_text(_ENERGY_LOG, encoding="utf-8")

    progress = read_log_progress(str(tmp_path), "md")

    assert progress.steps == 7520
    assert progress.wallclock_stop is True
    assert progress.finished is False


def test_read_log_progress_includes_part_logs(tmp_path: Path) -> None:
    (tmp_path / "md.log").write_text(_ENERGY_LOG, encoding="utf-8")
    (tmp_path / "md.part0002.log").write_text(
        "Started mdrun on rank 0\n"
        "           Step           Time\n"
        "          12000       24.00000\n"
        "Finished mdrun on rank 0 Mon Jan  1 02:00:00 2026\n",
        encoding="utf-8",
    )

    progress = read_log_progress(str(tmp_path), "md")

    assert progress.steps == 12000
    assert progress.finished is True
    assert progress.wallclock_stop is False
    assert len(progress.log_paths) == 2


def test_appended_restart_clears_previous_wallclock_flag(tmp_path: Path) -> None:
    (tmp_path / "md.log").write_text(
        _ENERGY_LOG + "Started mdrun on rank 0 Mon Jan  1 03:00:00 2026\n"
        "Writing checkpoint, step 9000 at now\n",
        encoding="utf-8",
    )

    progress = read_log_progress(str(tmp_path), "md")

    assert progress.steps == 9000
    assert progress.wallclock_stop is False


def test_term_signal_counts_as_wallclock_stop(tmp_path: Path) -> None:
    (tmp_path / "md.log").write_text(
        "Writing checkpoint, step 100 at now\n"
        "Received the TERM signal, stopping within 100 steps\n",
        encoding="utf-8",
    )

    assert read_log_progress(str(tmp_path), "md").wallclock_stop is True


def test_missing_logs_mean_zero_progress(tmp_path: Path) -> None:
    progress = read_log_progress(str(tmp_path), "md")

    assert progress.steps == 0
    assert progress.log_paths == ()


def test_inspect_checkpoint_accepts_magic_header(tmp_path: Path) -> None:
    path = tmp_path / "md.cpt"
    write_checkpoint(path)

    status = inspect_checkpoint(str(path))

    assert status.valid is True
    assert status.reason == "ok"
    assert status.size_bytes == 68
    assert status.sha256 and len(status.sha256) == 64


def test_inspect_checkpoint_rejects_bad_input(tmp_path: Path) -> None:
    missing = inspect_checkpoint(str(tmp_path / "absent.cpt"))
    assert (missing.exists, missing.valid, missing.reason) == (False, False, "missing")

    truncated_path = tmp_path / "short.cpt"
    truncated_path.write_bytes(b"\x00\x02")
    assert inspect_checkpoint(str(truncated_path)).reason == "truncated"

    wrong_path = tmp_path / "wrong.cpt"
    write_checkpoint(wrong_path, magic=42)
    wrong = inspect_checkpoint(str(wrong_path))
    assert wrong.valid is False
    assert wrong.reason == "bad_magic(42)"


def test_inspect_run_state_combines_log_and_checkpoint(tmp_path: Path) -> None:
    (tmp_path / "prod.log").write_text("Writing checkpoint, step 250 at now\n", encoding="utf-8")
    write_checkpoint(tmp_path / "prod.cpt")

    snapshot = inspect_run_state(str(tmp_path), "prod")

    assert snapshot.steps == 250
    assert snapshot.checkpoint.valid is True
