"""
CLI entry point for the CATMORPH ridge decoding sweep.

This module corresponds to MATLAB script(s): build_model.m, get_taskbehavior.m
Key matched choices:
  - 'sweep' command → build_model.m (nested ridge CV per subject, saved per subject)
  - 'summarize' command → group tables and t-tests over the saved subjects
  - 'behavior-targets' command → get_taskbehavior.m for every condition
Assumptions / deviations:
  - MATLAB aborts on the first missing file; the CLI aborts only the
    affected subject, reports it, and exits with status 1
  - Config-driven: all parameters from YAML, not hardcoded
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="catmorph-decoder",
    help="Nested cross-validated ridge decoding of vowel/speaker morph targets.",
    add_completion=False,
)
console = Console()


def _parse_subjects(subjects: Optional[str]) -> Optional[list[int]]:
    if not subjects:
        return None
    try:
        return [int(s.strip()) for s in subjects.split(",") if s.strip()]
    except ValueError:
        raise typer.BadParameter(f"Subjects must be comma-separated integers, got {subjects!r}")


@app.command()
def sweep(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    subjects: Optional[str] = typer.Option(None, "--subjects", "-s", help="Comma-separated subject IDs (overrides config)"),
    n_jobs: Optional[int] = typer.Option(None, "--n-jobs", "-j", help="Parallel subjects (overrides config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate config and print plan without running"),
) -> None:
    """Run the nested ridge sweep and save one result set per subject.

    Mirrors build_model.m: for each subject × condition × ROI × fold ×
    holdout scheme, selects a ridge penalty on interleaved inner
    partitions and scores the refit model on the outer test set.
    """
    from catmorph_decoder.config import build_provenance, load_config
    from catmorph_decoder.io.artifacts import ArtifactResultSink
    from catmorph_decoder.pipeline import run_sweep
    from catmorph_decoder.utils.logging import configure_logging

    cfg = load_config(config)
    subject_ids = _parse_subjects(subjects) or cfg.subjects
    if n_jobs is not None:
        cfg.compute.n_jobs = n_jobs

    if dry_run:
        console.print("[bold green]Config validated successfully.[/bold green]")
        console.print(f"  Subjects: {subject_ids}")
        console.print(f"  ROIs: {cfg.rois}")
        console.print(f"  Conditions: {[c.name for c in cfg.conditions]}")
        grid = cfg.lambda_grid.exponents
        console.print(f"  Lambda grid: 10^{grid[0]:g} .. 10^{grid[-1]:g} ({grid.size} values)")
        console.print(f"  Holdouts: {cfg.cv.holdouts}, outer folds: {cfg.cv.n_folds}")
        console.print(f"  Ridge: standardize={cfg.ridge.standardize}, centering={cfg.ridge.centering}")
        return

    configure_logging(cfg.logging.level, cfg.logging.log_dir)
    sink = ArtifactResultSink(
        cfg.paths.output_dir,
        provenance=build_provenance(cfg),
        config_snapshot=json.loads(cfg.model_dump_json()),
    )
    outcomes = run_sweep(cfg, subject_ids, sink=sink)

    table = Table(title="Sweep")
    table.add_column("Subject")
    table.add_column("Status")
    for outcome in outcomes:
        status = "[green]ok[/green]" if outcome.ok else f"[red]{outcome.error}[/red]"
        table.add_row(f"S{outcome.subject:02d}", status)
    console.print(table)

    if not all(o.ok for o in outcomes):
        raise typer.Exit(code=1)
    console.print("\n[bold green]Sweep complete.[/bold green]")


@app.command()
def summarize(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML config file"),
    q: float = typer.Option(0.05, "--q", help="FDR level across ROIs"),
) -> None:
    """Compile saved subject results into tables and group t-tests."""
    from catmorph_decoder.config import load_config
    from catmorph_decoder.eval.stats import collect_results, group_statistics, subject_means
    from catmorph_decoder.io.artifacts import load_subject_results
    from catmorph_decoder.utils.logging import configure_logging, get_logger

    cfg = load_config(config)
    configure_logging(cfg.logging.level, cfg.logging.log_dir)
    logger = get_logger(__name__)

    tensors = []
    for s_id in cfg.subjects:
        subject_dir = cfg.paths.output_dir / "results" / f"S{s_id:02d}"
        try:
            tensors.append(load_subject_results(subject_dir))
        except FileNotFoundError:
            logger.warning("No results for S%02d", s_id)

    if not tensors:
        console.print("[red]No subject results found.[/red]")
        raise typer.Exit(code=1)

    frame = collect_results(tensors)
    stats_frame = group_statistics(frame, q=q)

    tables_dir = cfg.paths.output_dir / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)
    frame.to_csv(tables_dir / "results_long.csv", index=False)
    subject_means(frame).to_csv(tables_dir / "subject_means.csv", index=False)
    stats_frame.to_csv(tables_dir / "group_stats.csv", index=False)

    table = Table(title=f"Group decoding ({len(tensors)} subjects)")
    for col in ("condition", "scheme", "roi", "n", "mean r", "t", "p(FDR)"):
        table.add_column(col)
    for row in stats_frame.itertuples(index=False):
        mark = "*" if row.significant_fdr else ""
        table.add_row(
            row.condition, row.scheme, str(row.roi), str(row.n_subjects),
            f"{row.mean_r:.3f}", f"{row.t_stat:.2f}", f"{row.p_fdr:.4f}{mark}",
        )
    console.print(table)
    console.print(f"\n[bold green]Tables written to {tables_dir}[/bold green]")


@app.command("behavior-targets")
def behavior_targets_cmd(
    morphs: Path = typer.Option(..., "--morphs", "-m", help="Per-trial morph table; columns 1-2 = vowel, speaker"),
    behavior: list[str] = typer.Option(..., "--behavior", "-b", help="NAME=PATH of a (grid × grid) behaviour matrix; repeatable"),
    grid: str = typer.Option("4:8:96", "--grid", "-g", help="Morph grid as start:step:stop"),
    output: Path = typer.Option(..., "--output", "-o", help="Output CSV (one column per condition)"),
) -> None:
    """Turn morph coordinates into behavioural target columns.

    Mirrors get_taskbehavior.m: looks up the behaviour matrix at each
    trial's (vowel, speaker) morph, mean-centres and scales to [-1, 1].
    The output CSV is a valid stimulus pool for the 'sweep' command.
    """
    from catmorph_decoder.data.behavior import behavior_targets_frame, parse_grid
    from catmorph_decoder.data.targets import read_matrix

    behaviors = {}
    for item in behavior:
        name, sep, path = item.partition("=")
        if not sep or not name or not path:
            raise typer.BadParameter(f"Expected NAME=PATH, got {item!r}")
        behaviors[name.strip()] = read_matrix(Path(path.strip()), mat_variable=name.strip())

    frame = behavior_targets_frame(read_matrix(morphs), behaviors, parse_grid(grid))
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output, index=False)
    console.print(f"[bold green]Wrote {len(frame)} trials × {frame.shape[1]} conditions to {output}[/bold green]")


if __name__ == "__main__":
    app()
