
from __future__ import annotations
import os
from typing import Optional
import typer
from rich.table import Table
from .config import load_config
from .cost import sum_usage
from .logging import console, setup_logging
from .utils.file_io import ensure_dir, read_json, write_csv, write_json
from .jobs import make_job_queue
from .models.schemas import BulkAnalysisRequest, CodedUnit, Job
from .pipeline.report_html import emit_review_html
from .pipeline.resolution import Taxonomy

app = typer.Typer(help="qcflow bulk qualitative coding pipeline")

CSV_FIELDS = ["id", "text", "themeId", "subThemeId", "confidence", "strictFit", "peerValidated",
              "reasoning", "sourceId", "speaker", "timestamp"]

def _stage_header(name: str):
    console.rule(f"[info]{name}[/info]")

def _load_request(input_path: str) -> BulkAnalysisRequest:
    return BulkAnalysisRequest.model_validate(read_json(input_path))

def _print_status(job: Job):
    style = {"completed": "ok", "failed": "err"}.get(job.status.value, "info")
    console.print(f"[{style}]job {job.id[:8]}: {job.status.value}[/{style}]")

def _write_outputs(out_dir: str, units: list[CodedUnit], request: BulkAnalysisRequest, stats: dict):
    rows = [u.to_wire() for u in units]
    write_json(os.path.join(out_dir, "coded_units.json"), rows)
    write_csv(os.path.join(out_dir, "coded_units.csv"), rows, fieldnames=CSV_FIELDS)
    emit_review_html(os.path.join(out_dir, "review.html"), units, Taxonomy(request.themes), stats)

def _usage_table(stage_usage: dict) -> Table:
    table = Table(title="Token Usage by Stage")
    table.add_column("Stage")
    table.add_column("Input")
    table.add_column("Output")
    table.add_column("Total")
    table.add_column("Est. Cost ($)")
    rows = dict(stage_usage)
    rows["ALL"] = sum_usage(stage_usage)
    for k, v in rows.items():
        table.add_row(k, str(v["input_tokens"]), str(v["output_tokens"]), str(v["total_tokens"]), str(v["estimated_cost"]))
    return table

def _stats_table(stats: dict) -> Table:
    table = Table(title="Pipeline Stats")
    table.add_column("Counter")
    table.add_column("Value", justify="right")
    for k, v in stats.items():
        if k in ("stage_usage", "failed_unit_ids"):
            continue
        table.add_row(k, str(v))
    return table

@app.command()
def code(
    input_path: str = typer.Option(..., "-i", help="JSON payload: {units, themes, corrections?, goldStandardUnits?}"),
    config_path: Optional[str] = typer.Option(None, "-c", help="YAML/JSON config"),
    out_dir: str = typer.Option("output", "-o", help="Output directory"),
    poll_interval: Optional[float] = typer.Option(None, help="Seconds between status polls"),
):
    """Bulk-code a dataset: analyst, critic and adjudication passes."""
    conf = load_config(config_path)
    conf.output.out_dir = out_dir
    ensure_dir(out_dir)
    log_file = os.path.join(out_dir, conf.output.log_file) if conf.output.log_file else None
    setup_logging(conf.output.log_level, log_file)

    request = _load_request(input_path)
    console.print(f"[ok] loaded {len(request.units)} units, {len(request.themes)} themes")

    _stage_header("Bulk Analysis")
    with make_job_queue(conf) as queue:
        job_id = queue.submit(request)
        job = queue.wait(job_id, poll_interval=poll_interval or conf.jobs.poll_interval, on_status=_print_status)

    if job.status.value == "failed":
        console.print(f"[err] {job.error}")
        raise typer.Exit(code=1)

    stats = job.stats or {}
    _write_outputs(out_dir, job.result or [], request, stats)
    write_json(os.path.join(out_dir, "run_meta.json"), {"job": {"id": job.id, "createdAt": job.created_at}, "stats": stats})

    gap = stats.get("coverage_gap", 0)
    if gap:
        console.print(f"[warn] {gap} of {stats.get('units_in')} units were not coded; see run_meta.json")
    console.print(f"[ok] Done. See {out_dir}")
    console.print(_stats_table(stats))
    console.print(_usage_table(stats.get("stage_usage", {})))

@app.command()
def report(
    input_path: str = typer.Option(..., "-i", help="The payload the units were coded from"),
    out_dir: str = typer.Option("output", "-o"),
):
    """Rebuild review.html from coded_units.json."""
    request = _load_request(input_path)
    units = [CodedUnit.model_validate(x) for x in read_json(os.path.join(out_dir, "coded_units.json"))]
    meta_path = os.path.join(out_dir, "run_meta.json")
    stats = read_json(meta_path).get("stats", {}) if os.path.exists(meta_path) else {}
    emit_review_html(os.path.join(out_dir, "review.html"), units, Taxonomy(request.themes), stats)
    console.print(f"[ok] Wrote {out_dir}/review.html")

if __name__ == "__main__":
    app()
