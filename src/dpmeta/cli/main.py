"""CLI application using Typer for DP mixture meta-analysis."""

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ..config.settings import settings
from ..core.errors import DPMetaError
from ..core.models import EffectDataset, Hyperparameters, MCMCConfig
from ..io.draws import save_draws
from ..io.loaders import load_effects_csv, load_proportions_csv
from ..io.paths import create_output_dir
from ..posterior.summarizer import PosteriorSummarizer
from ..sampler.driver import MCMCDriver
from ..sensitivity import run_sensitivity
from ..utils.logging import get_logger

app = typer.Typer(
    name="dpmeta",
    help="Dirichlet Process mixture random-effects meta-analysis",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

DRAW_FORMATS = ("parquet", "csv")


def _load_dataset(
    data_csv: Path,
    effect_col: str,
    variance_col: str,
    se_col: Optional[str],
    study_col: str,
    counts: bool,
    events_col: str,
    total_col: str,
    transform: str,
) -> EffectDataset:
    if counts:
        return load_proportions_csv(
            data_csv, events_col=events_col, total_col=total_col, study_col=study_col, transform=transform
        )
    return load_effects_csv(
        data_csv, effect_col=effect_col, variance_col=variance_col, se_col=se_col, study_col=study_col
    )


@app.command()
def fit(
    data_csv: Path = typer.Argument(..., help="CSV file with one row per study", exists=True),
    effect_col: str = typer.Option("effect", help="Column name for effect estimates"),
    variance_col: str = typer.Option("variance", help="Column name for sampling variances"),
    se_col: Optional[str] = typer.Option(None, help="Column name for standard errors (overrides variances)"),
    study_col: str = typer.Option("study_id", help="Column name for study identifiers"),
    counts: bool = typer.Option(False, "--counts", help="Read binomial counts instead of effects"),
    events_col: str = typer.Option("events", help="Column name for event counts (with --counts)"),
    total_col: str = typer.Option("total", help="Column name for sample sizes (with --counts)"),
    transform: str = typer.Option("logit", help="Scale for counts: 'logit' or 'proportion'"),
    alpha: float = typer.Option(1.0, "--alpha", "-a", help="DP concentration parameter"),
    mu: float = typer.Option(0.0, "--mu", help="Base-measure mean"),
    tau1: float = typer.Option(2.0, "--tau1", help="Base precision prior shape (x2)"),
    tau2: float = typer.Option(2.0, "--tau2", help="Base precision prior rate (x2)"),
    fixed_base_variance: bool = typer.Option(False, "--fixed-base-variance", help="Fix base variance at tau2/tau1"),
    burn_in: int = typer.Option(settings.default_burn_in, "--burn-in", help="Burn-in sweeps"),
    n_save: int = typer.Option(settings.default_n_save, "--n-save", help="Draws to save"),
    thinning: int = typer.Option(settings.default_thinning, "--thinning", help="Sweeps between saved draws"),
    display: int = typer.Option(settings.default_display_interval, "--display", help="Sweeps between log messages"),
    seed: Optional[int] = typer.Option(settings.default_seed, "--seed", help="Random seed"),
    level: float = typer.Option(0.95, "--level", help="Credible interval level"),
    out_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Directory for draws and summaries"),
    draws_format: str = typer.Option("parquet", "--draws-format", help="'parquet' or 'csv'"),
) -> None:
    """
    Fit the DP mixture to a CSV of studies and report posterior clusters.

    Examples:
        dpmeta fit studies.csv --alpha 1 --seed 42
        dpmeta fit prevalence.csv --counts --events-col cases --total-col n
    """
    if draws_format not in DRAW_FORMATS:
        console.print(f"[red]Error: unknown draws format {draws_format!r} (use parquet or csv)[/red]")
        raise typer.Exit(1)
    try:
        dataset = _load_dataset(
            data_csv, effect_col, variance_col, se_col, study_col, counts, events_col, total_col, transform
        )
        hyperparams = Hyperparameters(
            alpha=alpha, mu=mu, tau1=tau1, tau2=tau2, learn_base_variance=not fixed_base_variance
        )
        config = MCMCConfig(
            burn_in=burn_in, n_save=n_save, thinning=thinning, display_interval=display, seed=seed
        )
    except (DPMetaError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    console.print(f"[bold blue]Fitting DP mixture[/bold blue] to {dataset.n_studies} studies")
    driver = MCMCDriver(dataset, hyperparams, config)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Sweeping...", total=config.total_sweeps)
            result = driver.run(progress=lambda done, total: progress.update(task, completed=done))
    except DPMetaError as exc:
        console.print(f"[red]Sampler failed: {exc}[/red]")
        raise typer.Exit(1)

    summarizer = PosteriorSummarizer.from_result(result)
    studies = summarizer.study_summary(level=level)
    clusters = summarizer.cluster_summary(level=level)
    dist = summarizer.cluster_count_distribution()

    study_table = Table(title="Study Effects")
    study_table.add_column("Study", style="cyan")
    study_table.add_column("Observed", justify="right")
    study_table.add_column("Posterior mean", justify="right", style="green")
    study_table.add_column(f"{level:.0%} CrI", justify="right")
    study_table.add_column("Cluster", justify="right", style="yellow")
    for _, row in studies.iterrows():
        study_table.add_row(
            row["study_id"],
            f"{row['effect']:.4f}",
            f"{row['posterior_mean']:.4f}",
            f"[{row['ci_lower']:.4f}, {row['ci_upper']:.4f}]",
            str(row["cluster"]),
        )
    console.print(study_table)

    cluster_table = Table(title="Posterior Clusters")
    cluster_table.add_column("Cluster", style="yellow")
    cluster_table.add_column("Size", justify="right")
    cluster_table.add_column("Mean effect", justify="right", style="green")
    cluster_table.add_column(f"{level:.0%} CrI", justify="right")
    cluster_table.add_column("Members")
    for _, row in clusters.iterrows():
        cluster_table.add_row(
            str(row["cluster"]),
            str(row["size"]),
            f"{row['posterior_mean']:.4f}",
            f"[{row['ci_lower']:.4f}, {row['ci_upper']:.4f}]",
            row["members"],
        )
    console.print(cluster_table)
    console.print(f"Posterior mean number of clusters: {summarizer.mean_cluster_count():.2f}")

    if out_dir is None:
        out_dir = create_output_dir("dpmeta_fit")
    out_dir.mkdir(parents=True, exist_ok=True)
    draws_path = save_draws(result, out_dir / f"draws.{draws_format}")
    studies.to_csv(out_dir / "study_summary.csv", index=False)
    clusters.to_csv(out_dir / "cluster_summary.csv", index=False)
    summarizer.co_clustering().to_csv(out_dir / "co_clustering.csv")
    summarizer.forest_plot_frame(level=level).to_csv(out_dir / "forest_plot_data.csv", index=False)
    run_info = {
        "data": str(data_csv),
        "n_studies": dataset.n_studies,
        "hyperparameters": hyperparams.model_dump(),
        "config": config.model_dump(),
        "cluster_count_distribution": {int(k): float(v) for k, v in dist.items()},
        "predictive": summarizer.predictive_summary(level=level, seed=seed),
        "elapsed_seconds": result.elapsed_seconds,
    }
    (out_dir / "run_info.json").write_text(json.dumps(run_info, indent=2))
    console.print(f"[green]✓ Draws saved to {draws_path}[/green]")
    console.print(f"[green]✓ Summaries saved to {out_dir}[/green]")
    logger.info(
        f"Fit finished: {dataset.n_studies} studies, mean clusters {summarizer.mean_cluster_count():.2f}, "
        f"outputs in {out_dir}"
    )


@app.command()
def sensitivity(
    data_csv: Path = typer.Argument(..., help="CSV file with one row per study", exists=True),
    alphas: List[float] = typer.Option([0.01, 1.0, 5.0], "--alpha", "-a", help="Concentration values (repeatable)"),
    effect_col: str = typer.Option("effect", help="Column name for effect estimates"),
    variance_col: str = typer.Option("variance", help="Column name for sampling variances"),
    se_col: Optional[str] = typer.Option(None, help="Column name for standard errors (overrides variances)"),
    study_col: str = typer.Option("study_id", help="Column name for study identifiers"),
    counts: bool = typer.Option(False, "--counts", help="Read binomial counts instead of effects"),
    events_col: str = typer.Option("events", help="Column name for event counts (with --counts)"),
    total_col: str = typer.Option("total", help="Column name for sample sizes (with --counts)"),
    transform: str = typer.Option("logit", help="Scale for counts: 'logit' or 'proportion'"),
    mu: float = typer.Option(0.0, "--mu", help="Base-measure mean"),
    tau1: float = typer.Option(2.0, "--tau1", help="Base precision prior shape (x2)"),
    tau2: float = typer.Option(2.0, "--tau2", help="Base precision prior rate (x2)"),
    burn_in: int = typer.Option(settings.default_burn_in, "--burn-in", help="Burn-in sweeps"),
    n_save: int = typer.Option(settings.default_n_save, "--n-save", help="Draws to save per chain"),
    thinning: int = typer.Option(settings.default_thinning, "--thinning", help="Sweeps between saved draws"),
    seed: Optional[int] = typer.Option(settings.default_seed, "--seed", help="Random seed"),
    workers: int = typer.Option(settings.max_workers, "--workers", "-w", help="Worker processes"),
    out: Optional[Path] = typer.Option(None, "--output", help="CSV file for the comparison table"),
) -> None:
    """
    Compare posterior cluster counts across concentration values.

    Example:
        dpmeta sensitivity studies.csv -a 0.01 -a 1 -a 5 --workers 3
    """
    try:
        dataset = _load_dataset(
            data_csv, effect_col, variance_col, se_col, study_col, counts, events_col, total_col, transform
        )
        hyperparams = Hyperparameters(mu=mu, tau1=tau1, tau2=tau2)
        config = MCMCConfig(burn_in=burn_in, n_save=n_save, thinning=thinning, seed=seed)
        console.print(f"[bold blue]Running {len(alphas)} chains[/bold blue] on {dataset.n_studies} studies")
        sweep = run_sensitivity(dataset, alphas, hyperparams=hyperparams, config=config, max_workers=workers)
    except (DPMetaError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    df = sweep.summary_frame()
    logger.info(f"Sensitivity sweep over {len(sweep.alphas)} alpha values finished")
    table = Table(title="Concentration Sensitivity")
    table.add_column("alpha", style="cyan", justify="right")
    table.add_column("Mean clusters", style="green", justify="right")
    table.add_column("Modal", justify="right")
    table.add_column("P(K=1)", justify="right")
    table.add_column("Max", justify="right")
    for _, row in df.iterrows():
        table.add_row(
            f"{row['alpha']:g}",
            f"{row['mean_clusters']:.2f}",
            str(int(row["modal_clusters"])),
            f"{row['p_one_cluster']:.3f}",
            str(int(row["max_clusters"])),
        )
    console.print(table)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out, index=False)
        console.print(f"[green]✓ Comparison saved to {out}[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__
    console.print(f"dpmeta v{__version__}")


if __name__ == "__main__":
    app()
