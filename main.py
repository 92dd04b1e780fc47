"""
Command line entry point for the POS ledger toolkit.

Commands:
1. list        - filtered income or expense records
2. summary     - totals, balance and margin for the current filters
3. monthly     - per-month breakdown for a year (optionally as PDF)
4. report      - sales / expense PDF report of the filtered records
5. invoice     - invoice PDF for an order
6. certificates - certificate counts per type
7. add-expense - register an expense
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from tabulate import tabulate

from aggregator import MONTHLY_COLUMNS
from api_client import ApiClient, CertificateService, OrderService, ResourceService, EGRESOS_PATH
from config_manager import build_request_context, get_preference, load_config
from exceptions import LedgerAppError
from form_controller import DrawerController, ExpenseForm, Notifier
from formatting import format_currency, format_date, format_month, format_percentage
from ledger_view import CertificateBook, TransactionLedger
from models import Account, RecordKind
from report_generator import ReportGenerator
from utils import ensure_output_dir, resolve_log_path

logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {})
    level_name = str(log_config.get("level") or "INFO").upper()
    log_level = getattr(logging, level_name, None)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO
    log_format = log_config.get("format") or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers,
        force=True
    )
    if invalid_level:
        logger.warning(f"Invalid log level '{level_name}', using INFO")


def parse_date_arg(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=parse_date_arg, help="Start date (YYYY-MM-DD, inclusive)")
    parser.add_argument("--end", type=parse_date_arg, help="End date (YYYY-MM-DD, inclusive)")
    parser.add_argument("--account", choices=Account.values(), help="Payment account")
    parser.add_argument("--concept", help="Exact product / service")
    parser.add_argument("--search", help="Free text over name, document, reference and concept")
    parser.add_argument("--day", type=int, help="Day of month (1-31)")


def apply_filters(ledger: TransactionLedger, args: argparse.Namespace) -> None:
    """Translate CLI filter flags into the ledger's filter state."""
    date_range = None
    if args.start or args.end:
        start = args.start or args.end
        end = args.end or args.start
        date_range = (start, end)
    ledger.set_filters(
        date_range=date_range,
        account=args.account,
        concept=args.concept,
        free_text=args.search,
        day_of_month=args.day,
    )


def finance_client(config: dict) -> ApiClient:
    base_url = get_preference(config, 'api', 'finance_url') or get_preference(config, 'api', 'base_url')
    return ApiClient(build_request_context(config, base_url=base_url))


def load_ledger(config: dict, client: ApiClient, notifier: Notifier) -> TransactionLedger:
    ledger = TransactionLedger.from_config(config, client, notifier=notifier)
    if not ledger.refresh():
        raise LedgerAppError(ledger.error_message or "Unable to load records")
    return ledger


def handle_list_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    kind = RecordKind(args.kind)
    decimals = get_preference(config, 'reports', 'currency_decimals', 0)
    with finance_client(config) as client:
        ledger = load_ledger(config, client, notifier)
        apply_filters(ledger, args)
        records = ledger.filtered(kind)

    if not records:
        print("No records found matching the filters.")
        return

    name_header = "Cliente" if kind is RecordKind.INCOME else "Descripción"
    rows = [
        [
            format_date(record.timestamp),
            record.display_name,
            record.concept,
            record.account or "",
            format_currency(record.amount, decimals),
        ]
        for record in records[:args.limit]
    ]
    print(tabulate(rows, headers=["Fecha", name_header, "Producto / Servicio", "Cuenta", "Valor"], tablefmt="grid"))
    print(f"\nShowing {len(rows)} of {len(records)} records")


def handle_summary_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    with finance_client(config) as client:
        ledger = load_ledger(config, client, notifier)
        apply_filters(ledger, args)
        if args.year is not None:
            result = ledger.month_summary(args.year, args.month)
            label = format_month(args.year, args.month)
        else:
            result = ledger.summary()
            label = "Periodo seleccionado"
    print(ledger.report_generator.generate_summary_report(result, label))


def handle_monthly_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    decimals = get_preference(config, 'reports', 'currency_decimals', 0)
    with finance_client(config) as client:
        ledger = load_ledger(config, client, notifier)
        ledger.set_filters(account=args.account)
        breakdown = ledger.monthly_breakdown(args.year)

        if breakdown.empty:
            print(f"No records for {args.year}.")
            return

        display = breakdown[MONTHLY_COLUMNS].copy()
        for column in ('income', 'expenses', 'net'):
            display[column] = display[column].map(lambda v: format_currency(v, decimals))
        display['margin'] = display['margin'].map(format_percentage)
        print(tabulate(
            display[['period', 'income', 'expenses', 'net', 'margin']].values.tolist(),
            headers=["Periodo", "Ingresos", "Egresos", "Neto", "Margen"],
            tablefmt="grid"
        ))

        if args.pdf:
            path = ledger.export_monthly_report(args.year, ensure_output_dir(config, args.output))
            if path:
                print(f"\nPDF written to {path}")


def handle_report_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    with finance_client(config) as client:
        ledger = load_ledger(config, client, notifier)
        apply_filters(ledger, args)
        path = ledger.export_report(RecordKind(args.kind), ensure_output_dir(config, args.output))
    if path is None:
        sys.exit(1)
    print(f"PDF written to {path}")


def handle_invoice_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    generator = ReportGenerator(get_preference(config, 'reports', 'currency_decimals', 0))
    iva_rate = float(get_preference(config, 'reports', 'iva_rate', 0.0))
    with ApiClient(build_request_context(config)) as client:
        order = OrderService(client).get_order(args.order_id)
    path = generator.render_invoice(order, ensure_output_dir(config, args.output), iva_rate=iva_rate)
    notifier.success("Factura descargada exitosamente")
    print(f"PDF written to {path}")


def handle_certificates_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    base_url = get_preference(config, 'api', 'certificates_url') or get_preference(config, 'api', 'base_url')
    context = build_request_context(config, base_url=base_url)
    with ApiClient(context) as client:
        book = CertificateBook(CertificateService(client), context, notifier=notifier)
        if not book.refresh(
            args.start.isoformat() if args.start else None,
            args.end.isoformat() if args.end else None
        ):
            raise LedgerAppError(book.error_message or "Unable to load certificates")

    counts = book.counts(seller=args.seller)
    print(tabulate(list(counts.items()), headers=["Tipo", "Cantidad"], tablefmt="grid"))


def handle_add_expense_command(args: argparse.Namespace, config: dict, notifier: Notifier) -> None:
    with finance_client(config) as client:
        drawer = DrawerController(
            ExpenseForm(),
            ResourceService(client, EGRESOS_PATH),
            notifier=notifier,
            user_name=client.context.user_name,
            default_account=get_preference(config, 'display', 'default_account'),
        )
        drawer.open_for_create()
        changes = {"valor": args.valor, "descripcion": args.descripcion}
        if args.fecha:
            changes["fecha"] = args.fecha.isoformat()
        if args.cuenta:
            changes["cuenta"] = args.cuenta
        drawer.set_values(**changes)
        saved = drawer.submit()

    if saved is None:
        for field, message in drawer.errors.items():
            print(f"{field}: {message}", file=sys.stderr)
        sys.exit(1)
    print(f"Expense saved: {format_currency(saved.get('valor'))} - {saved.get('descripcion')}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="POS ledger: filter, summarize and report income and expenses",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    list_parser = subparsers.add_parser("list", help="List filtered records")
    list_parser.add_argument("--kind", choices=[k.value for k in RecordKind], default=RecordKind.INCOME.value)
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows to display (default: 50)")
    add_filter_arguments(list_parser)

    summary_parser = subparsers.add_parser("summary", help="Show totals for the filtered records")
    summary_parser.add_argument("--year", type=int, help="Month-level totals: year")
    summary_parser.add_argument("--month", type=int, help="Month-level totals: month (1-12)")
    add_filter_arguments(summary_parser)

    monthly_parser = subparsers.add_parser("monthly", help="Per-month breakdown for a year")
    monthly_parser.add_argument("--year", type=int, default=date.today().year)
    monthly_parser.add_argument("--account", choices=Account.values())
    monthly_parser.add_argument("--pdf", action="store_true", help="Also write the summary PDF")
    monthly_parser.add_argument("--output", "-o", help="Output directory")

    report_parser = subparsers.add_parser("report", help="Export the filtered records as PDF")
    report_parser.add_argument("--kind", choices=[k.value for k in RecordKind], default=RecordKind.INCOME.value)
    report_parser.add_argument("--output", "-o", help="Output directory")
    add_filter_arguments(report_parser)

    invoice_parser = subparsers.add_parser("invoice", help="Render the invoice PDF of an order")
    invoice_parser.add_argument("order_id", help="Order id")
    invoice_parser.add_argument("--output", "-o", help="Output directory")

    cert_parser = subparsers.add_parser("certificates", help="Certificate counts per type")
    cert_parser.add_argument("--start", type=parse_date_arg)
    cert_parser.add_argument("--end", type=parse_date_arg)
    cert_parser.add_argument("--seller", help="Only this seller's certificates")

    expense_parser = subparsers.add_parser("add-expense", help="Register an expense")
    expense_parser.add_argument("--valor", required=True, help="Amount")
    expense_parser.add_argument("--descripcion", required=True, help="Description")
    expense_parser.add_argument("--cuenta", choices=Account.values())
    expense_parser.add_argument("--fecha", type=parse_date_arg, help="Date (default: today)")

    return parser


HANDLERS = {
    "list": handle_list_command,
    "summary": handle_summary_command,
    "monthly": handle_monthly_command,
    "report": handle_report_command,
    "invoice": handle_invoice_command,
    "certificates": handle_certificates_command,
    "add-expense": handle_add_expense_command,
}


def main(argv: Optional[list] = None) -> None:
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "summary" and (args.year is None) != (args.month is None):
        parser.error("--year and --month must be given together")

    try:
        config = load_config(Path(args.config))
    except LedgerAppError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    try:
        HANDLERS[args.command](args, config, Notifier())
    except LedgerAppError as e:
        logger.error(str(e))
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
