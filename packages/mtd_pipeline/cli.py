"""CLI for the ``mtd_pipeline`` package.

Typer-based console interface over :mod:`mtd_pipeline.api`. Environment
variables (notably ``OPENAI_API_KEY``) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Results go to stdout, progress and
errors to stderr.
"""

from __future__ import annotations

import csv
import json
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .logging_setup import configure_logging

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Classify spreadsheet transactions into UK tax categories and compute quarterly "
        "Making Tax Digital totals. Loads OPENAI_API_KEY from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to the uploaded spreadsheet exported as CSV (header row first)",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
    readable=True,
)
BUSINESS_TYPE_OPTION: OptionInfo = typer.Option(
    ...,
    "--business-type",
    help="sole_trader (self-employment) or landlord (UK property)",
)
CACHE_WINDOW_OPTION: OptionInfo = typer.Option(
    None,
    "--cache-window",
    help="Persist classifications under this name (e.g. the tax year) and reuse them",
)


# ---- Small module-level helpers used by CLI commands -------------------------


def _fail(message: str) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(code=1)


def _read_rows(csv_path: Path) -> list[dict[str, Any]]:
    try:
        with open(csv_path, encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames is None:
                raise _fail(f"CSV appears to have no header row: {csv_path}")
            return [dict(row) for row in reader]
    except FileNotFoundError:
        raise _fail(f"File not found: {csv_path}") from None
    except PermissionError:
        raise _fail(f"Permission denied: {csv_path}") from None
    except csv.Error as e:
        raise _fail(f"Failed to parse CSV: {e}") from e


def _read_prior_totals(path: Path | None) -> dict[str, Any] | None:
    if path is None:
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f, parse_float=Decimal)
    except FileNotFoundError:
        raise _fail(f"File not found: {path}") from None
    except json.JSONDecodeError as e:
        raise _fail(f"Prior totals file is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise _fail("Prior totals file must hold a JSON object")
    return data


def _build_context(cache_window: str | None) -> Any:
    from .cache import ClassificationCache, default_cache_path
    from .classify import PipelineContext

    if cache_window is None:
        return PipelineContext()
    cache = ClassificationCache.load(default_cache_path(cache_window))
    return PipelineContext(cache=cache, cache_window=cache_window)


def _save_cache(context: Any, cache_window: str | None) -> None:
    from .cache import default_cache_path

    if cache_window is not None:
        context.cache.save(default_cache_path(cache_window))


def _progress(completed: int, total: int, pct: float) -> None:
    print(f"progress {completed}/{total} ({pct:.2f}%)", file=sys.stderr)


# ---- Commands ----------------------------------------------------------------


@app.command("summarize")
def summarize_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    business_type: Annotated[str, BUSINESS_TYPE_OPTION],
    *,
    period: str = typer.Option(..., "--period", help="Target quarter: q1, q2, q3 or q4"),
    shape: str | None = typer.Option(
        None, "--shape", help="Declared sheet shape: direct, cumulative or multi_section"
    ),
    prior_totals: Path | None = typer.Option(
        None,
        "--prior-totals",
        help="JSON file with earlier totals ({code: amount} or {\"Q1\": {code: amount}, ...})",
        dir_okay=False,
    ),
    tax_year: str | None = typer.Option(
        None, "--tax-year", help="Tax year such as 2024-25 (defaults to the current one)"
    ),
    filer: bool = typer.Option(
        False, "--filer", help="Print the filer submission instead of the report."
    ),
    cache_window: str | None = CACHE_WINDOW_OPTION,
) -> None:
    """Compute category totals for one quarter and print them as JSON."""

    from .errors import PipelineError
    from .filer import build_filer_submission
    from .periods import tax_year_for
    from .api import resolve_and_aggregate
    from .aggregate import frontend_summary

    rows = _read_rows(csv_path)
    prior = _read_prior_totals(prior_totals)
    try:
        context = _build_context(cache_window)
        report = resolve_and_aggregate(
            rows,
            period,
            business_type,
            declared_shape=shape,
            prior_period_totals=prior,
            context=context,
            progress_callback=_progress,
        )
        _save_cache(context, cache_window)
        if filer:
            submission = build_filer_submission(
                report,
                period=period,
                tax_year=tax_year or tax_year_for(date.today()),
                business_type=business_type,
            )
            out: dict[str, Any] = submission.model_dump(mode="json")
        else:
            out = report.to_dict()
            out["categories"] = [
                {**r, "amount": str(r["amount"])} for r in frontend_summary(report)
            ]
    except (PipelineError, ValueError, OSError) as e:
        raise _fail(str(e)) from e

    typer.echo(json.dumps(out, indent=2, ensure_ascii=False))


@app.command("classify")
def classify_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    business_type: Annotated[str, BUSINESS_TYPE_OPTION],
    *,
    cache_window: str | None = CACHE_WINDOW_OPTION,
) -> None:
    """Classify every row and print ``<index>\\t<status>\\t<category or reason>``."""

    from .api import classify_batch
    from .errors import PipelineError

    rows = _read_rows(csv_path)
    try:
        context = _build_context(cache_window)
        batch = classify_batch(rows, business_type, _progress, context=context)
        _save_cache(context, cache_window)
    except (PipelineError, ValueError, OSError) as e:
        raise _fail(str(e)) from e

    for outcome in batch.outcomes:
        if outcome.result is not None and outcome.result.category is not None:
            detail = outcome.result.category
        elif outcome.error is not None:
            detail = outcome.error.reason
        elif outcome.result is not None:
            detail = outcome.result.rationale
        else:
            detail = ""
        typer.echo(f"{outcome.index}\t{outcome.status}\t{detail}")
    for warning in batch.warnings:
        print(f"Warning: {warning}", file=sys.stderr)


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m mtd_pipeline.cli`
    app()
