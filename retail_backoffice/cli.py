"""Command line entry points for the retail back-office core."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Callable

import structlog

from retail_backoffice.analyses.segmentation import (
    SegmentationReport,
    analyze_customer_segments,
)
from retail_backoffice.config import BackofficeSettings
from retail_backoffice.db.session import Datastore
from retail_backoffice.foundation.customer_facts import CustomerFactBuilder
from retail_backoffice.metrics import start_metrics_server
from retail_backoffice.observability import configure_from_settings
from retail_backoffice.services.numbering import DOCUMENT_TYPES, SequenceGenerator
from retail_backoffice.services.points import PointsLedger, PointsTransactionType

logger = structlog.get_logger(__name__)


MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

# Report amounts are shown in whole cents
CENT = Decimal("0.01")


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_order_history(path: Path) -> CustomerFactBuilder:
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ValueError("Expected a JSON object with 'customers' and 'orders' lists")

    orders = []
    for item in payload.get("orders", []):
        order = dict(item)
        if isinstance(order.get("created_at"), str):
            order["created_at"] = _parse_timestamp(order["created_at"])
        orders.append(order)

    return CustomerFactBuilder.from_records(payload.get("customers", []), orders)


def _report_as_dict(report: SegmentationReport, as_of: datetime) -> dict[str, Any]:
    stats = report.stats
    return {
        "as_of": as_of.isoformat(),
        "stats": {
            "total_customers": stats.total_customers,
            "active_customers": stats.active_customers,
            "average_amount": str(
                stats.average_amount.quantize(CENT, rounding=ROUND_HALF_UP)
            ),
            "vip_customers": stats.vip_customers,
            "segment_distribution": {
                segment.value: count
                for segment, count in stats.segment_distribution.items()
            },
        },
        "customers": [
            {
                "customer_id": score.customer_id,
                "customer_name": score.customer_name,
                "last_purchase_date": (
                    score.last_purchase_date.isoformat()
                    if score.last_purchase_date
                    else None
                ),
                "purchase_count": score.purchase_count,
                "total_amount": str(score.total_amount),
                "recency_days": score.recency_days,
                "rfm_code": score.rfm_code,
                "segment": score.segment.value,
                "label": score.descriptor.label,
                "color_tag": score.descriptor.color_tag,
            }
            for score in report.customers
        ],
    }


def _resolve_output_path(path: Path) -> Path:
    output_path = path.resolve()
    cwd = Path.cwd().resolve()
    try:
        output_path.relative_to(cwd)
    except ValueError:
        raise ValueError(
            f"Output path {output_path} must reside within the current working directory"
        )
    return output_path


def rfm_report_cli(argv: list[str] | None = None) -> int:
    """Score customers from an order-history JSON file and report segments."""

    parser = argparse.ArgumentParser(
        prog="retail-backoffice rfm-report", description=rfm_report_cli.__doc__
    )
    parser.add_argument(
        "input",
        type=Path,
        help="Path to JSON file with 'customers' and 'orders' lists",
    )
    parser.add_argument(
        "--as-of",
        type=_parse_timestamp,
        help="Reference time for recency (ISO format). Defaults to now.",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Optional path for writing the report as JSON.",
    )

    args = parser.parse_args(argv)
    as_of = args.as_of or datetime.now(timezone.utc)

    logger.info("loading_order_history", path=str(args.input))
    provider = _load_order_history(args.input)
    report = analyze_customer_segments(provider, as_of=as_of)
    payload = _report_as_dict(report, as_of)

    if args.output:
        output_path = _resolve_output_path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
        logger.info("rfm_report_written", path=str(output_path))
    else:  # stdout fallback enables piping in shell usage.
        json.dump(payload, fp=sys.stdout, indent=2, ensure_ascii=False)
        print()

    return 0


def _add_database_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy database URL (defaults to BACKOFFICE_DATABASE_URL).",
    )


def _open_datastore(args: argparse.Namespace) -> Datastore:
    settings = BackofficeSettings.from_env()
    url = args.database_url or settings.database_url
    return Datastore(url, echo=settings.sql_echo)


def next_number_cli(argv: list[str] | None = None) -> int:
    """Issue the next number for a document type."""

    parser = argparse.ArgumentParser(
        prog="retail-backoffice next-number", description=next_number_cli.__doc__
    )
    parser.add_argument("document_type", choices=sorted(DOCUMENT_TYPES))
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Issue date (YYYY-MM-DD). Defaults to today in UTC.",
    )
    _add_database_argument(parser)

    args = parser.parse_args(argv)
    datastore = _open_datastore(args)
    try:
        result = SequenceGenerator(datastore).issue_result(args.document_type, args.date)
    finally:
        datastore.dispose()

    if not result.success:
        print(result.message, file=sys.stderr)
        return 1
    print(result.number)
    return 0


def adjust_points_cli(argv: list[str] | None = None) -> int:
    """Apply an EARN, REDEEM or ADJUST points transaction to a customer."""

    parser = argparse.ArgumentParser(
        prog="retail-backoffice adjust-points", description=adjust_points_cli.__doc__
    )
    parser.add_argument("customer_id")
    parser.add_argument(
        "transaction_type", choices=[item.value for item in PointsTransactionType]
    )
    parser.add_argument("points", type=int)
    parser.add_argument("--description", help="Ledger entry description.")
    _add_database_argument(parser)

    args = parser.parse_args(argv)
    datastore = _open_datastore(args)
    try:
        result = PointsLedger(datastore).adjust_points(
            args.customer_id, args.transaction_type, args.points, args.description
        )
    finally:
        datastore.dispose()

    print(result.model_dump_json(indent=2))
    return 0 if result.success else 1


def init_db_cli(argv: list[str] | None = None) -> int:
    """Create the back-office tables if they do not exist."""

    parser = argparse.ArgumentParser(
        prog="retail-backoffice init-db", description=init_db_cli.__doc__
    )
    _add_database_argument(parser)

    args = parser.parse_args(argv)
    datastore = _open_datastore(args)
    try:
        datastore.create_all()
    finally:
        datastore.dispose()
    return 0


COMMANDS: dict[str, Callable[[list[str] | None], int]] = {
    "rfm-report": rfm_report_cli,
    "next-number": next_number_cli,
    "adjust-points": adjust_points_cli,
    "init-db": init_db_cli,
}


def run(argv: list[str] | None = None) -> int:
    """Dispatch ``retail-backoffice <command> [args...]``."""

    parser = argparse.ArgumentParser(prog="retail-backoffice", description=__doc__)
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("args", nargs=argparse.REMAINDER)
    args = parser.parse_args(argv)

    settings = BackofficeSettings.from_env()
    configure_from_settings(settings)
    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)

    return COMMANDS[args.command](args.args)


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main()
