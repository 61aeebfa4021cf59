from __future__ import annotations

from pathlib import Path

import pytest

import pipeline.plugins as plugins
from commands.stage import run_pipeline_stage
from conftest import append_log, write_checkpoint
from md_engine.errors import ExternalToolError, MissingInputError
from md_engine.gmx_runner import GmxResult
from md_engine.mdp import ensure_mdp, render_mdp
from pipeline.layout import ProjectLayout
from pipeline.stage_analysis import run_analysis_stage
from pipeline.stage_equilibration import run_em_stage, run_npt_stage, run_nvt_stage
from pipeline.stage_prep import run_prep_stage
from stage_config import PipelineParams

# Files each fake gmx tool leaves behind, relative to its cwd unless named by -o.
_TOOL_OUTPUTS = {
    "pdb2gmx": ["topol.top", "posre.itp"],
    "mdrun": [],
}


class FakeGmx:
    """Records gmx invocations and creates the files they would write."""

    def __init__(self, fail_tool: str | None = None) -> None:
        self.calls: list[tuple[str, list[str], str, str | None]] = []
        self.fail_tool = fail_tool

    def ensure_available(self) -> str:
        return "/usr/bin/gmx"

    def run(self, tool, args, *, cwd, stdin_text=None, check=True):
        args = [str(arg) for arg in args]
        self.calls.append((tool, args, cwd, stdin_text))
        if tool == self.fail_tool:
            raise ExternalToolError(f"gmx {tool} failed", command=["gmx", tool], exit_code=1)
        for name in _TOOL_OUTPUTS.get(tool, []):
            (Path(cwd) / name).write_text(name, encoding="utf-8")
        if "-o" in args:
            target = Path(cwd) / args[args.index("-o") + 1]
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(tool, encoding="utf-8")
        if tool == "mdrun":
            deffnm = args[args.index("-deffnm") + 1]
            for suffix in (".gro", ".cpt", ".log"):
                (Path(cwd) / f"{deffnm}{suffix}").write_text(tool, encoding="utf-8")
        return GmxResult(command=["gmx", tool, *args], exit_code=0, stdout="", stderr="")

    def tools(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def layout(tmp_path: Path) -> ProjectLayout:
    return ProjectLayout(str(tmp_path / "proj"))


def test_prep_runs_setup_sequence_and_publishes_topology(tmp_path: Path, layout: ProjectLayout) -> None:
    pdb = tmp_path / "protein.pdb"
    pdb.write_text("ATOM\n", encoding="utf-8")
    gmx = FakeGmx()

    result = run_prep_stage(layout, PipelineParams(), gmx, input_path=str(pdb))

    assert gmx.tools() == ["pdb2gmx", "editconf", "solvate", "grompp", "genion", "grompp"]
    pdb2gmx_args = gmx.calls[0][1]
    assert "-ignh" in pdb2gmx_args
    assert pdb2gmx_args[pdb2gmx_args.index("-ff") + 1] == "charmm36-jul2022"
    editconf_args = gmx.calls[1][1]
    assert editconf_args[editconf_args.index("-d") + 1] == "2.0"
    assert editconf_args[editconf_args.index("-bt") + 1] == "cubic"
    tool, genion_args, _cwd, stdin_text = gmx.calls[4]
    assert stdin_text == "SOL\n"
    assert genion_args[genion_args.index("-conc") + 1] == "0.15"
    assert {"-neutral", "-pname", "-nname"} <= set(genion_args)
    assert result.next_tpr == str(Path(layout.em_dir) / "em.tpr")
    assert Path(layout.topology).is_file()
    assert (Path(layout.root) / "posre.itp").is_file()
    assert (Path(layout.mdp_dir) / "ions.mdp").is_file()


def test_prep_requires_input_structure(tmp_path: Path, layout: ProjectLayout) -> None:
    with pytest.raises(MissingInputError, match="stage 'prep'"):
        run_prep_stage(layout, PipelineParams(), FakeGmx(), input_path=str(tmp_path / "absent.pdb"))
    with pytest.raises(ValueError, match="--input"):
        run_prep_stage(layout, PipelineParams(), FakeGmx())


def test_equilibration_chain_hands_off_tpr_files(layout: ProjectLayout) -> None:
    layout.ensure_dirs()
    Path(layout.topology).write_text("topology", encoding="utf-8")
    (Path(layout.em_dir) / "em.tpr").write_text("tpr", encoding="utf-8")
    gmx = FakeGmx()
    params = PipelineParams()

    em = run_em_stage(layout, params, gmx, mdrun_args=["-ntomp", "4"])
    nvt = run_nvt_stage(layout, params, gmx)
    npt = run_npt_stage(layout, params, gmx)

    assert em.next_tpr == str(Path(layout.nvt_dir) / "nvt.tpr")
    assert npt.next_tpr == str(Path(layout.md_dir) / "md.tpr")
    assert Path(npt.next_tpr).is_file()
    assert gmx.calls[0][1] == ["-deffnm", "em", "-ntomp", "4"]
    nvt_grompp = gmx.calls[1][1]
    assert "-r" in nvt_grompp and "-t" not in nvt_grompp
    npt_grompp = gmx.calls[3][1]
    assert "-t" in npt_grompp and "-r" in npt_grompp
    md_grompp = gmx.calls[5][1]
    assert "-t" in md_grompp and "-r" not in md_grompp
    assert nvt.stage == "nvt"


def test_equilibration_requires_previous_tpr(layout: ProjectLayout) -> None:
    layout.ensure_dirs()
    Path(layout.topology).write_text("topology", encoding="utf-8")

    with pytest.raises(MissingInputError, match="nvt.tpr"):
        run_nvt_stage(layout, PipelineParams(), FakeGmx())


def test_analysis_refuses_incomplete_production(layout: ProjectLayout) -> None:
    layout.ensure_dirs()
    append_log(Path(layout.md_dir) / "md.log", ["Writing checkpoint, step 10 at now"])

    with pytest.raises(ValueError, match="not complete"):
        run_analysis_stage(layout, FakeGmx(), target_steps=100)


def test_analysis_runs_on_completed_production(layout: ProjectLayout) -> None:
    layout.ensure_dirs()
    md_dir = Path(layout.md_dir)
    append_log(md_dir / "md.log", ["Writing checkpoint, step 100 at now"])
    write_checkpoint(md_dir / "md.cpt")
    for name in ("md.tpr", "md.xtc", "md.edr"):
        (md_dir / name).write_text(name, encoding="utf-8")
    gmx = FakeGmx()

    result = run_analysis_stage(layout, gmx, target_steps=100)

    assert gmx.tools() == ["trjconv", "rms", "gyrate", "energy"]
    assert all(Path(output).parent == Path(layout.analysis_dir) for output in result.outputs)


def test_mdp_templates_render_params(tmp_path: Path) -> None:
    text = render_mdp("nvt", PipelineParams(temperature=310.0, nvt_steps=25000).to_dict())

    assert "nsteps                  = 25000" in text
    assert "ref_t                   = 310.0 310.0" in text
    with pytest.raises(KeyError):
        render_mdp("sd", {})


def test_ensure_mdp_keeps_user_file(tmp_path: Path) -> None:
    custom = tmp_path / "em.mdp"
    custom.write_text("; hand tuned\n", encoding="utf-8")

    path = ensure_mdp(str(tmp_path), "em", PipelineParams().to_dict())

    assert path == str(custom)
    assert custom.read_text(encoding="utf-8") == "; hand tuned\n"


def test_stage_registry_rejects_unknown_and_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    with pytest.raises(plugins.FeatureUnavailableError, match="Available stages"):
        plugins.load_stage_runner("minimize")

    monkeypatch.setenv("MDCHAIN_DISABLE_ANALYSIS", "1")
    with pytest.raises(plugins.FeatureUnavailableError, match="disabled"):
        plugins.load_stage_runner("analysis")


def test_run_pipeline_stage_reports_tool_failure(tmp_path: Path, app_config) -> None:
    project = tmp_path / "proj"
    pdb = tmp_path / "protein.pdb"
    pdb.write_text("ATOM\n", encoding="utf-8")

    exit_code = run_pipeline_stage(
        "prep",
        str(project),
        input_path=str(pdb),
        app_config=app_config,
        gmx=FakeGmx(fail_tool="solvate"),
    )

    assert exit_code == 1


def test_run_pipeline_stage_writes_params_used(tmp_path: Path, app_config, capsys) -> None:
    project = tmp_path / "proj"
    project.mkdir()
    (project / "mdchain_params.yaml").write_text("salt_concentration: 0.1\n", encoding="utf-8")
    pdb = tmp_path / "protein.pdb"
    pdb.write_text("ATOM\n", encoding="utf-8")

    exit_code = run_pipeline_stage(
        "prep",
        str(project),
        input_path=str(pdb),
        overrides={"water_model": "tip4p"},
        app_config=app_config,
        gmx=FakeGmx(),
    )

    assert exit_code == 0
    used = (project / "01_prep" / "params_used.json").read_text(encoding="utf-8")
    assert '"salt_concentration": 0.1' in used
    assert '"water_model": "tip4p"' in used
    assert "next_tpr:" in capsys.readouterr().out
