"""
View state for the income/expense ledger and the certificate book.

Holds the fetched records and the current FilterState, re-fetches after
mutations and turns failures into notifications. Rendering is left to the
caller (CLI tables here; any UI could sit on top).
"""

import logging
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from aggregator import aggregate, aggregate_month, count_certificates_by_type, monthly_breakdown
from api_client import (
    ApiClient,
    CertificateService,
    RequestContext,
    TransactionService,
    extract_error_message,
)
from config_manager import get_preference
from exceptions import ApiError, ReportError, SessionError, ViewError
from form_controller import Notifier
from models import AggregateResult, Certificate, FilterState, RecordKind, TransactionRecord
from record_filter import concept_options, filter_records
from report_generator import ReportGenerator
from utils import ensure_output_dir, get_output_dir

logger = logging.getLogger(__name__)


class TransactionLedger:
    """
    Income and expense records with a shared filter selection.

    Usage:
        ledger = TransactionLedger.from_config(config, client)
        ledger.refresh()
        ledger.set_filters(account="Nequi")
        print(ledger.summary())
    """

    def __init__(
        self,
        income_service: TransactionService,
        expense_service: TransactionService,
        context: RequestContext,
        notifier: Optional[Notifier] = None,
        report_generator: Optional[ReportGenerator] = None,
        month_scope_ignores_text_filters: bool = True,
        output_dir: Optional[Path] = None
    ):
        self.services = {
            RecordKind.INCOME: income_service,
            RecordKind.EXPENSE: expense_service,
        }
        self.context = context
        self.notifier = notifier or Notifier()
        self.report_generator = report_generator or ReportGenerator()
        self.month_scope_ignores_text_filters = month_scope_ignores_text_filters
        self.output_dir = output_dir

        self.records: Dict[RecordKind, List[TransactionRecord]] = {
            RecordKind.INCOME: [],
            RecordKind.EXPENSE: [],
        }
        self.filter_state = FilterState()
        self.error_message: Optional[str] = None

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        client: ApiClient,
        notifier: Optional[Notifier] = None
    ) -> "TransactionLedger":
        tz = get_preference(config, 'display', 'timezone')
        return cls(
            TransactionService(client, RecordKind.INCOME, tz=tz),
            TransactionService(client, RecordKind.EXPENSE, tz=tz),
            client.context,
            notifier=notifier,
            report_generator=ReportGenerator(get_preference(config, 'reports', 'currency_decimals', 0)),
            month_scope_ignores_text_filters=get_preference(
                config, 'aggregation', 'month_scope_ignores_text_filters', True
            ),
            output_dir=get_output_dir(config),
        )

    @property
    def incomes(self) -> List[TransactionRecord]:
        return self.records[RecordKind.INCOME]

    @property
    def expenses(self) -> List[TransactionRecord]:
        return self.records[RecordKind.EXPENSE]

    def refresh(self) -> bool:
        """
        Re-fetch both collections.

        A missing session blocks the fetch and sets error_message. A failed
        request keeps the previous records.

        Returns:
            True if both collections were fetched
        """
        try:
            self.context.require_session()
        except SessionError as e:
            self.error_message = e.message
            logger.warning(f"Ledger refresh skipped: {e}")
            return False

        try:
            fetched = {kind: service.list_records() for kind, service in self.services.items()}
        except ApiError as e:
            self.error_message = extract_error_message(e, "Error al cargar los datos")
            self.notifier.error(self.error_message)
            return False

        self.records.update(fetched)
        self.error_message = None
        logger.info(f"Ledger loaded {len(self.incomes)} incomes and {len(self.expenses)} expenses")
        return True

    def delete(self, kind: RecordKind, record_id: str) -> bool:
        """
        Delete a record, removing it locally before the request completes.

        The local copy is restored if the server rejects the delete.
        """
        previous = self.records[kind]
        if not any(record.id == record_id for record in previous):
            raise ViewError("Record not found", details={"kind": kind.value, "id": record_id})
        self.records[kind] = [record for record in previous if record.id != record_id]

        try:
            self.services[kind].delete(record_id)
        except ApiError as e:
            self.records[kind] = previous
            self.notifier.error(extract_error_message(e, "Error al eliminar el registro"))
            return False

        self.notifier.success("Registro eliminado correctamente")
        return True

    def set_filters(self, **changes: Any) -> FilterState:
        """Update facets; invalid input raises FilterError and keeps the old state."""
        self.filter_state = replace(self.filter_state, **changes)
        return self.filter_state

    def reset_filters(self) -> FilterState:
        """Clear every facet except the date range."""
        self.filter_state = self.filter_state.reset()
        return self.filter_state

    def filtered(self, kind: RecordKind) -> List[TransactionRecord]:
        return filter_records(self.records[kind], self.filter_state)

    def summary(self) -> AggregateResult:
        return aggregate(self.incomes, self.expenses, self.filter_state)

    def month_summary(self, year: int, month: int) -> AggregateResult:
        return aggregate_month(
            self.incomes,
            self.expenses,
            self.filter_state,
            year,
            month,
            ignore_text_filters=self.month_scope_ignores_text_filters,
        )

    def monthly_breakdown(self, year: int) -> pd.DataFrame:
        return monthly_breakdown(self.incomes, self.expenses, year, account=self.filter_state.account)

    def concept_options(self) -> List[str]:
        return concept_options(self.incomes)

    def report_period(self, records: List[TransactionRecord]) -> Tuple[date, date]:
        """The selected date range, or the span of the records when none is set."""
        if self.filter_state.date_range is not None:
            return self.filter_state.date_range
        days = [record.timestamp.date() for record in records if record.timestamp is not None]
        if not days:
            today = date.today()
            return today, today
        return min(days), max(days)

    def _resolve_output_dir(self, output_dir: Optional[Path]) -> Path:
        target = output_dir or self.output_dir
        if target is None:
            raise ViewError("No output directory configured")
        return ensure_output_dir(override=target)

    def export_report(self, kind: RecordKind, output_dir: Optional[Path] = None) -> Optional[Path]:
        """
        Render the filtered records of one kind as a PDF report.

        Returns:
            Path of the written file, or None when there was nothing to
            export or rendering failed (a notification explains which)
        """
        records = self.filtered(kind)
        if not records:
            self.notifier.info("No hay registros para exportar")
            return None

        try:
            path = self.report_generator.render_transaction_report(
                records, kind, self.report_period(records), self._resolve_output_dir(output_dir)
            )
        except ReportError as e:
            self.notifier.error(f"Error al generar el PDF: {e.message}")
            return None

        self.notifier.success(f"PDF generado: {path.name}")
        return path

    def export_monthly_report(self, year: int, output_dir: Optional[Path] = None) -> Optional[Path]:
        breakdown = self.monthly_breakdown(year)
        try:
            path = self.report_generator.render_monthly_report(
                breakdown, year, self._resolve_output_dir(output_dir)
            )
        except ReportError as e:
            self.notifier.error(f"Error al generar el PDF: {e.message}")
            return None
        self.notifier.success(f"PDF generado: {path.name}")
        return path


class CertificateBook:
    """Certificate clients fetched for a date range, with per-type counts."""

    def __init__(
        self,
        service: CertificateService,
        context: RequestContext,
        notifier: Optional[Notifier] = None
    ):
        self.service = service
        self.context = context
        self.notifier = notifier or Notifier()
        self.certificates: List[Certificate] = []
        self.error_message: Optional[str] = None

    def refresh(self, start: Optional[str] = None, end: Optional[str] = None) -> bool:
        try:
            self.context.require_session(require_tenant=True)
        except SessionError as e:
            self.error_message = e.message
            logger.warning(f"Certificate refresh skipped: {e}")
            return False

        try:
            self.certificates = self.service.list_certificates(start, end)
        except ApiError as e:
            self.error_message = extract_error_message(e, "Error al obtener certificados")
            self.notifier.error(self.error_message)
            return False

        self.error_message = None
        return True

    def for_seller(self, seller: Optional[str]) -> List[Certificate]:
        if not seller:
            return list(self.certificates)
        return [c for c in self.certificates if c.seller == seller]

    def sellers(self) -> List[str]:
        return sorted({c.seller for c in self.certificates if c.seller})

    def counts(self, seller: Optional[str] = None) -> Dict[str, int]:
        return count_certificates_by_type(self.certificates, seller=seller)
