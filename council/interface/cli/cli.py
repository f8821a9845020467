import json
import logging
from dataclasses import asdict
from pathlib import Path

import click
from pydantic import BaseModel, ValidationError

from council.application.config_loader import ConfigLoadError, load_engine_config
from council.domain.analysis.consensus_gate import evaluate_consensus, normalize_supporter_provider_ids
from council.domain.analysis.structural_analysis import compute_structural_analysis
from council.domain.models.claim_graph import ClaimGraph
from council.interface.cli.output_models import (
    AnalyzeOutput,
    ConfigOutput,
    LimitEntry,
    LimitsOutput,
    ShapeSummary,
)


def _json_emit(model: BaseModel) -> None:
    # Single-line JSON, omit None fields (e.g., AnalyzeOutput.consensus without claims).
    click.echo(model.model_dump_json(exclude_none=True), nl=True)


def _get_json_mode(ctx: click.Context) -> bool:
    obj = ctx.obj or {}
    return bool(obj.get("json", False))


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _fail(ctx: click.Context, output: BaseModel, message: str) -> None:
    """Report a command error in the active output mode."""
    if _get_json_mode(ctx):
        _json_emit(output)
        raise click.exceptions.Exit(1)
    raise click.ClickException(message)


@click.group(help="Council workflow engine CLI.")
@click.option("--json", "json_output", is_flag=True, help="Emit machine-readable JSON on stdout.")
@click.option("--verbose", "-v", is_flag=True, help="Log engine detail to stderr.")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool) -> None:
    ctx.ensure_object(dict)
    ctx.obj["json"] = bool(json_output)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command("analyze")
@click.argument("graph_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--completed",
    type=str,
    default=None,
    help="Comma-separated providers whose batch call completed.",
)
@click.option(
    "--citation-order",
    "citation_order",
    type=str,
    default=None,
    help="Comma-separated providers in citation order (1-based indices).",
)
@click.pass_context
def analyze_cmd(
    ctx: click.Context,
    graph_file: Path,
    completed: str | None,
    citation_order: str | None,
) -> None:
    """Run the consensus gate and structural analysis on a claim graph."""
    try:
        topology = json.loads(graph_file.read_text(encoding="utf-8"))
        if not isinstance(topology, dict):
            raise ValueError("Graph file must contain a JSON object")
        graph = ClaimGraph.from_topology(topology)
        config = load_engine_config(project_root=Path.cwd(), user_home=Path.home())

        order = {index + 1: pid for index, pid in enumerate(_split_csv(citation_order))}
        completed_ids = _split_csv(completed)
        if not completed_ids:
            # Assume every cited provider completed
            completed_ids = list(order.values())
            for claim in graph.claims:
                for pid in normalize_supporter_provider_ids(claim.supporters, order):
                    if pid not in completed_ids:
                        completed_ids.append(pid)

        gate = evaluate_consensus(graph.claims, completed_ids, order)
        analysis = compute_structural_analysis(
            graph, model_count=len(completed_ids) or None, config=config.analysis
        )
        shape = analysis.shape

        if _get_json_mode(ctx):
            _json_emit(
                AnalyzeOutput(
                    exit_code=0,
                    claim_count=len(graph.claims),
                    edge_count=len(graph.edges),
                    completed_providers=completed_ids,
                    consensus=gate.model_dump(mode="json") if gate else None,
                    shape=ShapeSummary(
                        primary_pattern=shape.primary_pattern.value,
                        confidence=shape.confidence,
                        evidence=shape.evidence,
                    ),
                    ratios=asdict(analysis.ratios),
                    analysis=analysis.to_dict(),
                )
            )
            raise click.exceptions.Exit(0)

        click.echo(f"claims={len(graph.claims)} edges={len(graph.edges)}")
        click.echo(f"completed={','.join(completed_ids)}")
        if gate is None:
            click.echo("consensus=none")
        else:
            click.echo(
                f"consensus_only={str(gate.consensus_only).lower()} reason={gate.reason.value} "
                f"max_supporters={gate.stats.max_supporters}"
            )
        click.echo(f"pattern={shape.primary_pattern.value} confidence={shape.confidence:.2f}")
        for name, value in asdict(analysis.ratios).items():
            click.echo(f"  {name}={value:.2f}")
        for line in shape.evidence:
            click.echo(f"  - {line}")

    except click.exceptions.Exit:
        raise
    except (OSError, ValueError, ValidationError, ConfigLoadError) as e:
        _fail(ctx, AnalyzeOutput(exit_code=1, error=str(e)), str(e))


@cli.command("limits")
@click.pass_context
def limits_cmd(ctx: click.Context) -> None:
    """Show per-provider input budgets, with configured overrides applied."""
    try:
        config = load_engine_config(project_root=Path.cwd(), user_home=Path.home())
    except ConfigLoadError as e:
        _fail(ctx, LimitsOutput(exit_code=1, error=str(e)), str(e))
        return

    entries = [
        LimitEntry(
            provider_id=pid,
            max_input_chars=limit.max_input_chars,
            warn_threshold=limit.warn_threshold,
        )
        for pid, limit in config.build_provider_limits().items()
    ]

    if _get_json_mode(ctx):
        _json_emit(LimitsOutput(exit_code=0, limits=entries))
        raise click.exceptions.Exit(0)

    width = max((len(e.provider_id) for e in entries), default=8)
    click.echo(f"{'PROVIDER'.ljust(width)}  {'MAX CHARS':>10}  {'WARN AT':>10}")
    for entry in entries:
        click.echo(
            f"{entry.provider_id.ljust(width)}  {entry.max_input_chars:>10}  {entry.warn_threshold:>10}"
        )


@cli.command("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Show the resolved engine configuration."""
    try:
        config = load_engine_config(project_root=Path.cwd(), user_home=Path.home())
    except ConfigLoadError as e:
        _fail(ctx, ConfigOutput(exit_code=1, error=str(e)), str(e))
        return

    data = config.model_dump(mode="json")
    if _get_json_mode(ctx):
        _json_emit(ConfigOutput(exit_code=0, config=data))
        raise click.exceptions.Exit(0)

    click.echo(json.dumps(data, indent=2, sort_keys=True))


if __name__ == "__main__":
    cli()
