# ruff: noqa: I001
"""CLI for the ``statement_ingest`` package.

Command handlers (``cmd_*``) return a process exit code and print errors to
stderr; the Typer commands below wrap them. The root callback loads a local
``.env`` with ``python-dotenv`` (without overriding the environment) and
configures logging. Business logic lives in ``statement_ingest.api``.
"""

from __future__ import annotations

import json
import sys
from datetime import date
from pathlib import Path
from typing import Annotated, Any
from collections.abc import Sequence

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import (
    AggregatorUnavailable,
    ConsentError,
    ConsentIntegrityViolation,
    MalformedStatement,
    MissingRequiredColumn,
    StatementIngestError,
)
from .logging_setup import configure_logging, get_logger
from .models import ConsentView, TransactionView

_logger = get_logger("statement_ingest.cli")


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _parse_day(value: str | None, flag: str) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"{flag} must be YYYY-MM-DD, got {value!r}") from None


# ---- Command handlers -------------------------------------------------------


def cmd_ingest_csv(
    csv_path: str,
    *,
    user_id: str,
    account_hint: str | None = None,
    database_url: str | None = None,
) -> int:
    """Parse a bank statement CSV and persist its rows.

    Output is a JSON object with the parse summary, save counts and any row
    warnings. When every row failed, nothing is written and the row errors
    are printed to stderr.
    """

    from .workflows.ingest_flow import ingest_statement_from_csv

    try:
        result = ingest_statement_from_csv(
            csv_path,
            user_id=user_id,
            account_hint=account_hint,
            database_url=database_url,
            on_progress=_logger.info,
        )
    except FileNotFoundError:
        print(f"Error: File not found: {csv_path}", file=sys.stderr)
        return 1
    except PermissionError:
        print(f"Error: Permission denied: {csv_path}", file=sys.stderr)
        return 1
    except MissingRequiredColumn as e:
        print(f"Error: Failed to parse CSV: {e}", file=sys.stderr)
        return 1
    except MalformedStatement as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except StatementIngestError as e:
        print(f"Error: ingestion failed: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: persistence failed: {e}", file=sys.stderr)
        return 1

    summary = result.summary
    payload: dict[str, Any] = {
        "message": "CSV uploaded and processed successfully",
        "summary": {
            "total_rows": summary.total_rows,
            "parsed": summary.parsed,
            "failed": summary.failed,
            "total_credit": str(summary.total_credit),
            "total_debit": str(summary.total_debit),
        },
        "save_result": {
            "saved": result.ingest.saved_count,
            "skipped": result.ingest.skipped_count,
            "errors": [
                {"external_id": e.external_id, "message": e.message} for e in result.ingest.errors
            ],
        },
    }
    if result.row_errors:
        payload["warnings"] = list(result.row_errors)
    _emit(payload)
    return 0


def cmd_sample_csv(*, as_json: bool = False) -> int:
    from .ingest.utils import SAMPLE_CSV, sample_csv_format

    if as_json:
        _emit(sample_csv_format())
    else:
        print(SAMPLE_CSV)
    return 0


def cmd_consent_initiate(
    *,
    user_id: str,
    customer_identifier: str,
    scopes: Sequence[str],
    database_url: str | None = None,
) -> int:
    from .api import initiate_consent

    try:
        started = initiate_consent(
            user_id=user_id,
            customer_identifier=customer_identifier,
            scopes=scopes or ("DEPOSIT",),
            database_url=database_url,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: consent initiation failed: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "consent_id": started.consent_id,
            "consent_handle": started.consent_handle,
            "authorization_url": started.authorization_url,
            "status": started.record.status.value,
        }
    )
    return 0


def cmd_consent_callback(
    status: str,
    *,
    consent_id: str | None = None,
    consent_handle: str | None = None,
    provider_id: str | None = None,
    database_url: str | None = None,
) -> int:
    from .api import record_consent_callback

    try:
        record = record_consent_callback(
            status,
            consent_id=consent_id,
            consent_handle=consent_handle,
            provider_id=provider_id,
            database_url=database_url,
        )
    except ConsentIntegrityViolation as e:
        print(f"Error: TAMPERING DETECTED: {e}", file=sys.stderr)
        return 2
    except (ConsentError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit(ConsentView.from_record(record).model_dump(mode="json"))
    return 0


def cmd_consent_revoke(consent_id: str, *, database_url: str | None = None) -> int:
    from .api import revoke_consent

    try:
        record = revoke_consent(consent_id, database_url=database_url)
    except ConsentIntegrityViolation as e:
        print(f"Error: TAMPERING DETECTED: {e}", file=sys.stderr)
        return 2
    except ConsentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit(ConsentView.from_record(record).model_dump(mode="json"))
    return 0


def cmd_consent_history(consent_id: str, *, database_url: str | None = None) -> int:
    from .api import consent_history

    try:
        versions = consent_history(consent_id, database_url=database_url)
    except ConsentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit([ConsentView.from_record(v).model_dump(mode="json") for v in versions])
    return 0


def cmd_consent_verify(consent_id: str, *, database_url: str | None = None) -> int:
    """Exit 0 when the chain verifies, 2 when it does not."""

    from .api import verify_consent_chain

    try:
        ok = verify_consent_chain(consent_id, database_url=database_url)
    except ConsentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not ok:
        print(
            f"Error: TAMPERING DETECTED: consent {consent_id} chain does not verify",
            file=sys.stderr,
        )
        return 2
    print(f"Consent {consent_id}: chain verified")
    return 0


def cmd_ingest_aggregator(
    consent_id: str,
    *,
    user_id: str | None = None,
    database_url: str | None = None,
) -> int:
    from .api import ingest_from_aggregator

    try:
        result = ingest_from_aggregator(consent_id, user_id=user_id, database_url=database_url)
    except ConsentIntegrityViolation as e:
        print(f"Error: TAMPERING DETECTED: {e}", file=sys.stderr)
        return 2
    except ConsentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except AggregatorUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "saved": result.saved_count,
            "skipped": result.skipped_count,
            "errors": [{"external_id": e.external_id, "message": e.message} for e in result.errors],
        }
    )
    return 0


def cmd_transactions(
    *,
    user_id: str,
    start: str | None = None,
    end: str | None = None,
    category: str | None = None,
    direction: str | None = None,
    source_type: str | None = None,
    page: int = 1,
    limit: int = 50,
    database_url: str | None = None,
) -> int:
    from .api import list_user_transactions

    try:
        items, total = list_user_transactions(
            user_id=user_id,
            start=_parse_day(start, "--from"),
            end=_parse_day(end, "--to"),
            category=category,
            direction=direction.upper() if direction else None,
            source_type=source_type.upper() if source_type else None,
            limit=limit,
            offset=max(page - 1, 0) * limit,
            database_url=database_url,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "transactions": [
                TransactionView.from_transaction(t).model_dump(mode="json") for t in items
            ],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": (total + limit - 1) // limit if limit else 0,
            },
        }
    )
    return 0


def cmd_summary(
    *,
    user_id: str,
    start: str | None = None,
    end: str | None = None,
    database_url: str | None = None,
) -> int:
    from .api import summarize_user_transactions

    try:
        summary = summarize_user_transactions(
            user_id=user_id,
            start=_parse_day(start, "--from"),
            end=_parse_day(end, "--to"),
            database_url=database_url,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _emit(
        {
            "by_category": [
                {
                    "category": c.category,
                    "type": c.direction.value,
                    "total": str(c.total),
                    "count": c.count,
                }
                for c in summary.by_category
            ],
            "totals": {
                "income": str(summary.income),
                "expense": str(summary.expense),
                "net": str(summary.net),
            },
        }
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to a bank statement CSV export",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)
USER_ID_OPTION: OptionInfo = typer.Option(..., "--user-id", help="Owner of the records.")
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
CONSENT_ID_OPTION: OptionInfo = typer.Option(..., "--consent-id", help="Logical consent id.")
FROM_OPTION: OptionInfo = typer.Option("--from", help="Start date, YYYY-MM-DD (inclusive).")
TO_OPTION: OptionInfo = typer.Option("--to", help="End date, YYYY-MM-DD (inclusive).")


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Normalize bank statement CSVs and Account Aggregator data into one "
        "transaction store. Loads DATABASE_URL and AA_* settings from a local .env."
    ),
)


def _exit(code: int) -> None:
    if code:
        raise typer.Exit(code)


@app.command("ingest-csv")
def ingest_csv_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    user_id: Annotated[str, USER_ID_OPTION],
    *,
    account: str | None = typer.Option(None, help="Source account label for every row."),
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Parse a statement CSV, classify rows and store them (idempotent)."""

    _exit(
        cmd_ingest_csv(
            str(csv_path), user_id=user_id, account_hint=account, database_url=database_url
        )
    )


@app.command("sample-csv")
def sample_csv_cmd(
    as_json: bool = typer.Option(False, "--json", help="Print the full format guide as JSON."),
) -> None:
    """Print the reference statement layout."""

    _exit(cmd_sample_csv(as_json=as_json))


@app.command("consent-initiate")
def consent_initiate_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    customer_identifier: str = typer.Option(
        ..., "--customer", help="Mobile number or virtual address registered with the AA."
    ),
    scope: list[str] | None = typer.Option(  # noqa: B008
        None, "--scope", help="FI type to request; repeatable (default DEPOSIT)."
    ),
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Create a PENDING consent and print the authorization URL."""

    _exit(
        cmd_consent_initiate(
            user_id=user_id,
            customer_identifier=customer_identifier,
            scopes=scope or ("DEPOSIT",),
            database_url=database_url,
        )
    )


@app.command("consent-callback")
def consent_callback_cmd(
    status: str = typer.Option(..., "--status", help="Status reported by the aggregator."),
    consent_id: str | None = typer.Option(None, "--consent-id", help="Logical consent id."),
    consent_handle: str | None = typer.Option(
        None, "--consent-handle", help="Handle issued at initiation."
    ),
    provider_id: str | None = typer.Option(None, "--provider-id", help="FIP identifier."),
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Record an aggregator callback as a new consent version."""

    _exit(
        cmd_consent_callback(
            status,
            consent_id=consent_id,
            consent_handle=consent_handle,
            provider_id=provider_id,
            database_url=database_url,
        )
    )


@app.command("consent-revoke")
def consent_revoke_cmd(
    consent_id: Annotated[str, CONSENT_ID_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    _exit(cmd_consent_revoke(consent_id, database_url=database_url))


@app.command("consent-history")
def consent_history_cmd(
    consent_id: Annotated[str, CONSENT_ID_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Print every stored version, oldest first."""

    _exit(cmd_consent_history(consent_id, database_url=database_url))


@app.command("consent-verify")
def consent_verify_cmd(
    consent_id: Annotated[str, CONSENT_ID_OPTION],
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Recompute hashes and parent links for a consent's history."""

    _exit(cmd_consent_verify(consent_id, database_url=database_url))


@app.command("ingest-aggregator")
def ingest_aggregator_cmd(
    consent_id: Annotated[str, CONSENT_ID_OPTION],
    user_id: str | None = typer.Option(
        None, "--user-id", help="Expected consent owner; a different user is refused."
    ),
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Fetch FI data for an approved consent (mock transport) and store it."""

    _exit(cmd_ingest_aggregator(consent_id, user_id=user_id, database_url=database_url))


@app.command("transactions")
def transactions_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    start: Annotated[str | None, FROM_OPTION] = None,
    end: Annotated[str | None, TO_OPTION] = None,
    category: str | None = typer.Option(None, help="Exact category name."),
    direction: str | None = typer.Option(None, "--type", help="CREDIT or DEBIT."),
    source_type: str | None = typer.Option(None, help="e.g. BANK_ACCOUNT, LOAN."),
    page: int = typer.Option(1, min=1),
    limit: int = typer.Option(50, min=1, max=500),
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """List stored transactions, newest first."""

    _exit(
        cmd_transactions(
            user_id=user_id,
            start=start,
            end=end,
            category=category,
            direction=direction,
            source_type=source_type,
            page=page,
            limit=limit,
            database_url=database_url,
        )
    )


@app.command("summary")
def summary_cmd(
    user_id: Annotated[str, USER_ID_OPTION],
    start: Annotated[str | None, FROM_OPTION] = None,
    end: Annotated[str | None, TO_OPTION] = None,
    *,
    database_url: Annotated[str | None, DATABASE_URL_OPTION] = None,
) -> None:
    """Category-wise totals plus income, expense and net."""

    _exit(cmd_summary(user_id=user_id, start=start, end=end, database_url=database_url))


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
    app()
