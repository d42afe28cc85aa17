# ruff: noqa: I001
"""CLI for the ``budget_planning`` package.

Command handlers (``cmd_*``) return a process exit code and are callable
directly from tests; the Typer commands below only parse options and exit with
the handler's code. ``.env`` is loaded with ``python-dotenv`` and logging is
configured once in the root callback. Business logic lives in
``budget_planning.api``.
"""

from __future__ import annotations

import csv
import json
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .errors import BudgetDocumentError
from .logging_setup import configure_logging
from .models import DocumentType, Lifecycle, MergeResult, ValueKind

console = Console()
err_console = Console(stderr=True)

_KINDS = {
    "sales-rep": DocumentType.SALES_REP_BUDGET,
    "divisional": DocumentType.DIVISIONAL_BUDGET,
}


# ---- Small helpers ------------------------------------------------------------


def _report_error(e: BudgetDocumentError) -> None:
    print(f"Error: {e.message or e}", file=sys.stderr)
    problems = e.details.get("problems")
    if problems:
        for p in problems:
            print(f"  - {p}", file=sys.stderr)
    examples = e.details.get("examples")
    if examples:
        for ex in examples:
            print(f"  - record {ex['index']}: {'; '.join(ex['reasons'])}", file=sys.stderr)


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _csv_record(line: int, row: dict[str | None, Any]) -> dict[str, Any]:
    rec: dict[str, Any] = {k.strip(): (v or "").strip() for k, v in row.items() if k}
    try:
        if "month" in rec:
            rec["month"] = int(rec["month"])
        if "value" in rec:
            rec["value"] = float(rec["value"])
    except ValueError as e:
        raise ValueError(f"line {line}: {e}") from e
    return rec


def _read_records(path: Path) -> list[Any]:
    """Edited records from a CSV file (header row required) or a JSON file.

    JSON may be a list of record objects or an object with a ``records`` list,
    such as a payload copied out of a document.
    """

    if path.suffix.lower() == ".csv":
        with path.open(encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise csv.Error(f"CSV appears to have no header row: {path}")
            return [_csv_record(i, row) for i, row in enumerate(reader, start=2)]
    raw = _read_json(path)
    if isinstance(raw, dict):
        raw = raw.get("records")
    if not isinstance(raw, list):
        raise ValueError("records file must hold a list of records or an object with 'records'")
    return raw


def _parse_monthly_targets(raw: Any) -> dict[int, float]:
    if not isinstance(raw, dict):
        raise ValueError("targets file must hold an object mapping month -> total")
    return {int(k): float(v) for k, v in raw.items()}


def _parse_estimates(raw: Any) -> dict[int, dict[ValueKind, float]]:
    if not isinstance(raw, dict):
        raise ValueError("estimates file must hold an object mapping month -> {kind: total}")
    out: dict[int, dict[ValueKind, float]] = {}
    for month, per_kind in raw.items():
        if not isinstance(per_kind, dict):
            raise ValueError(f"estimates for month {month} must be an object")
        out[int(month)] = {ValueKind(str(k).upper()): float(v) for k, v in per_kind.items()}
    return out


def _print_merge_summary(result: MergeResult) -> None:
    owner = result.owner or "Divisional"
    table = Table(title=f"Budget import: {result.division} / {owner} / {result.budget_year}")
    table.add_column("Value kind")
    table.add_column("Rows inserted", justify="right")
    table.add_column("Total", justify="right")
    for kind in ValueKind:
        table.add_row(kind.value, str(result.inserted[kind]), f"{result.totals[kind]:,.2f}")
    console.print(table)
    console.print(
        f"Archived {result.archived}, deleted {result.deleted}, "
        f"skipped {len(result.skipped)} invalid record(s); "
        f"pricing year {result.pricing_year} ({result.pricing_entries} entries)"
    )
    if result.existing_count:
        console.print(
            f"Replaced {result.existing_count} row(s) last uploaded "
            f"{result.existing_last_upload} from {result.existing_last_filename}"
        )
    for w in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {w}")


# ---- Command handlers ----------------------------------------------------------


def cmd_export_document(
    *,
    division: str,
    owner: str | None,
    source_year: int,
    final: bool = False,
    targets_path: str | None = None,
    output: str | None = None,
    database_url: str | None = None,
) -> int:
    """Write a draft (or final) budget document for ``division``/``owner``."""

    from db.client import session_scope
    from .api import build_document
    from .encoder import suggest_filename

    try:
        targets = _parse_monthly_targets(_read_json(Path(targets_path))) if targets_path else None
    except (OSError, ValueError) as e:
        print(f"Error: failed to read targets: {e}", file=sys.stderr)
        return 1

    try:
        with session_scope(database_url=database_url) as session:
            doc = build_document(
                session,
                division=division,
                owner=owner,
                source_year=source_year,
                lifecycle=Lifecycle.FINAL if final else Lifecycle.DRAFT,
                monthly_targets=targets,
            )
    except BudgetDocumentError as e:
        _report_error(e)
        return 1
    except Exception as e:
        print(f"Error: export failed: {e}", file=sys.stderr)
        return 1

    out_path = Path(output) if output else Path.cwd() / suggest_filename(doc.metadata)
    try:
        out_path.write_text(doc.html, encoding="utf-8")
    except OSError as e:
        print(f"Error: cannot write {out_path}: {e}", file=sys.stderr)
        return 1
    console.print(f"Wrote {len(doc.records)} record(s) to {out_path}")
    return 0


def cmd_finalize_document(
    input_path: str,
    *,
    output: str | None = None,
    records_path: str | None = None,
    database_url: str | None = None,
) -> int:
    """Re-encode a saved draft as a final, importable document.

    ``records_path`` supplies edited records that replace the saved ones.
    """

    from .api import finalize_document
    from .encoder import suggest_filename

    try:
        raw = Path(input_path).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error: cannot read {input_path}: {e}", file=sys.stderr)
        return 1

    edits = None
    if records_path:
        try:
            edits = _read_records(Path(records_path))
        except (OSError, ValueError, csv.Error) as e:
            print(f"Error: failed to read records: {e}", file=sys.stderr)
            return 1

    try:
        if database_url:
            from db.client import session_scope

            with session_scope(database_url=database_url) as session:
                doc = finalize_document(raw, records=edits, session=session)
        else:
            doc = finalize_document(raw, records=edits)
    except BudgetDocumentError as e:
        _report_error(e)
        return 1

    out_path = (
        Path(output) if output else Path(input_path).with_name(suggest_filename(doc.metadata))
    )
    try:
        out_path.write_text(doc.html, encoding="utf-8")
    except OSError as e:
        print(f"Error: cannot write {out_path}: {e}", file=sys.stderr)
        return 1
    console.print(f"Wrote final document with {len(doc.records)} record(s) to {out_path}")
    return 0


def cmd_import_document(
    input_path: str,
    *,
    kind: str,
    division: str | None = None,
    owner: str | None = None,
    database_url: str | None = None,
) -> int:
    """Validate and merge a final document into the database."""

    from .api import import_document

    expected_kind = _KINDS.get(kind)
    if expected_kind is None:
        print(f"Error: unknown kind {kind!r}; use one of {', '.join(_KINDS)}", file=sys.stderr)
        return 1
    path = Path(input_path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {input_path}: {e}", file=sys.stderr)
        return 1

    try:
        result = import_document(
            raw,
            expected_kind=expected_kind,
            expected_division=division,
            expected_owner=owner,
            database_url=database_url,
            source_filename=path.name,
        )
    except BudgetDocumentError as e:
        _report_error(e)
        return 1

    _print_merge_summary(result)
    return 0


def cmd_calculate_estimate(
    *, division: str, year: int, months: list[int], database_url: str | None = None
) -> int:
    """Print flat monthly estimates per value kind for ``months``."""

    from db.client import session_scope
    from .api import calculate_estimate

    try:
        with session_scope(database_url=database_url) as session:
            result = calculate_estimate(
                session, division=division, year=year, target_months=months
            )
    except BudgetDocumentError as e:
        _report_error(e)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    base = ", ".join(map(str, result.base_months))
    table = Table(title=f"Estimate {division} {year} (base months {base})")
    table.add_column("Month", justify="right")
    for kind in ValueKind:
        table.add_column(kind.value, justify="right")
    table.add_column("Records", justify="right")
    for month, per_kind in result.per_month().items():
        table.add_row(
            str(month),
            *(f"{per_kind.get(k, 0):,}" for k in ValueKind),
            str(result.record_count),
        )
    console.print(table)
    return 0


def cmd_save_estimate(
    *,
    division: str,
    year: int,
    estimates_path: str,
    approved_by: str | None = None,
    database_url: str | None = None,
) -> int:
    """Persist approved estimates as ``ESTIMATE`` rows."""

    from .api import save_estimate

    try:
        estimates = _parse_estimates(_read_json(Path(estimates_path)))
    except (OSError, ValueError) as e:
        print(f"Error: failed to read estimates: {e}", file=sys.stderr)
        return 1

    try:
        saved = save_estimate(
            division=division,
            year=year,
            estimates=estimates,
            approved_by=approved_by,
            database_url=database_url,
        )
    except BudgetDocumentError as e:
        _report_error(e)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    console.print(
        f"Saved {saved.inserted} estimate row(s) for months {list(saved.months)} "
        f"({saved.combinations} combinations; replaced {saved.deleted})"
    )
    return 0


# ---- Typer-based console interface ---------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Produce, finalize and import offline budget documents.",
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter defaults).
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
DIVISION_OPTION: OptionInfo = typer.Option(..., "--division", help="Division name, e.g. FP-UAE.")
INPUT_OPTION: OptionInfo = typer.Option(
    ..., "--input", help="Path to a budget document.", dir_okay=False, exists=False
)
OUTPUT_OPTION: OptionInfo = typer.Option(
    None, "--output", help="Output path (defaults to the suggested DRAFT_/FINAL_ file name)."
)


@app.command("export-document")
def export_document_cmd(
    division: Annotated[str, DIVISION_OPTION],
    source_year: int = typer.Option(
        ..., "--source-year", help="Actual year; the budget is for the next year."
    ),
    owner: str | None = typer.Option(
        None, "--owner", help="Sales rep; omit for a divisional document."
    ),
    final: bool = typer.Option(False, "--final", help="Mark the document final instead of draft."),
    targets: Path | None = typer.Option(
        None, "--targets", help="JSON object month -> total KGS to allocate across last year's mix."
    ),
    output: Path | None = OUTPUT_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    raise typer.Exit(
        cmd_export_document(
            division=division,
            owner=owner,
            source_year=source_year,
            final=final,
            targets_path=str(targets) if targets else None,
            output=str(output) if output else None,
            database_url=database_url,
        )
    )


@app.command("finalize-document")
def finalize_document_cmd(
    input_path: Annotated[Path, INPUT_OPTION],
    output: Path | None = OUTPUT_OPTION,
    records: Path | None = typer.Option(
        None, "--records", help="Edited records (.csv or .json) replacing the saved ones."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    raise typer.Exit(
        cmd_finalize_document(
            str(input_path),
            output=str(output) if output else None,
            records_path=str(records) if records else None,
            database_url=database_url,
        )
    )


@app.command("import-document")
def import_document_cmd(
    input_path: Annotated[Path, INPUT_OPTION],
    kind: str = typer.Option(
        "sales-rep", "--kind", help="Expected document kind: sales-rep or divisional."
    ),
    division: str | None = typer.Option(
        None, "--division", help="Division the upload is made from."
    ),
    owner: str | None = typer.Option(None, "--owner", help="Sales rep the upload is made for."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    raise typer.Exit(
        cmd_import_document(
            str(input_path), kind=kind, division=division, owner=owner, database_url=database_url
        )
    )


@app.command("calculate-estimate")
def calculate_estimate_cmd(
    division: Annotated[str, DIVISION_OPTION],
    year: int = typer.Option(..., "--year", help="Year with actuals."),
    month: list[int] = typer.Option(..., "--month", help="Month to estimate (repeatable)."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    raise typer.Exit(
        cmd_calculate_estimate(
            division=division, year=year, months=month, database_url=database_url
        )
    )


@app.command("save-estimate")
def save_estimate_cmd(
    division: Annotated[str, DIVISION_OPTION],
    year: int = typer.Option(..., "--year", help="Year with actuals."),
    estimates: Path = typer.Option(
        ..., "--estimates", help="JSON object month -> {KGS|AMOUNT|MORM: total}."
    ),
    approved_by: str | None = typer.Option(
        None, "--approved-by", help="Approver recorded on the rows."
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    raise typer.Exit(
        cmd_save_estimate(
            division=division,
            year=year,
            estimates_path=str(estimates),
            approved_by=approved_by,
            database_url=database_url,
        )
    )


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment.
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


def main(argv: list[str] | None = None) -> int:
    """Run the CLI with ``argv`` and return the exit code instead of exiting."""

    try:
        app(args=argv, standalone_mode=False)
    except typer.Exit as e:
        return int(e.exit_code or 0)
    return 0


if __name__ == "__main__":  # pragma: no cover
    app()
