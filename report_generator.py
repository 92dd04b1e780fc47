"""
Report generator module for POS records.

Builds downloadable PDF reports (sales/expense listings, invoice
receipts, monthly summaries) with reportlab, plus plain-text summaries
for the CLI.
"""

import json
import logging
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for file output
import matplotlib.pyplot as plt
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from exceptions import ReportError
from formatting import format_currency, format_date, format_long_date, format_percentage, format_period
from models import AggregateResult, LineItem, Order, RecordKind, TransactionRecord

logger = logging.getLogger(__name__)

BRAND_COLOR = colors.Color(21 / 255, 81 / 255, 83 / 255)
ROW_ALT = colors.Color(245 / 255, 245 / 255, 245 / 255)
GRID_COLOR = colors.Color(200 / 255, 200 / 255, 200 / 255)


def parse_line_items(raw: Any) -> List[LineItem]:
    """
    Parse an order's items_detalle into line items.

    Accepts a JSON string or an already-decoded list. Malformed input
    yields an empty list so the invoice still renders.
    """
    items = raw
    if isinstance(raw, str):
        try:
            items = json.loads(raw)
        except ValueError:
            logger.warning("Unparsable items_detalle, rendering without line items")
            return []
    if not isinstance(items, list):
        return []
    return [LineItem.from_api(item) for item in items if isinstance(item, dict)]


def report_filename(title: str, period_start: date) -> str:
    """File name "<Title_with_underscores>_<MM>_<YYYY>.pdf"."""
    return f"{'_'.join(title.split())}_{period_start:%m}_{period_start:%Y}.pdf"


def invoice_filename(order_id: str) -> str:
    return f"Factura_{order_id}.pdf"


class ReportGenerator:
    """
    Generate formatted reports from record sets.

    PDFs are written to an output directory and the resulting path is
    returned; any failure surfaces as ReportError.
    """

    def __init__(self, currency_decimals: int = 0):
        """
        Initialize the report generator.

        Args:
            currency_decimals: Fraction digits for amounts
        """
        self.currency_decimals = currency_decimals
        self.styles = getSampleStyleSheet()
        logger.info("Report generator initialized")

    def format_currency(self, amount: float) -> str:
        return format_currency(amount, self.currency_decimals)

    def _build(self, output_path: Path, story: list) -> Path:
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            doc = SimpleDocTemplate(
                str(output_path),
                pagesize=A4,
                leftMargin=15 * mm,
                rightMargin=15 * mm,
                topMargin=15 * mm,
                bottomMargin=15 * mm,
            )
            doc.build(story)
        except Exception as e:
            logger.error(f"Failed to write report {output_path}: {e}", exc_info=True)
            raise ReportError(
                f"PDF generation failed: {e}",
                details={"path": str(output_path)},
                original_error=e
            )
        logger.info(f"Saved report to {output_path}")
        return output_path

    def _table(self, data: List[list], col_widths: Optional[List[float]] = None,
               right_align_from: Optional[int] = None, total_row: bool = False) -> Table:
        table = Table(data, colWidths=col_widths, repeatRows=1)
        style = [
            ('BACKGROUND', (0, 0), (-1, 0), BRAND_COLOR),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, 0), 10),
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 1), (-1, -1), 9),
            ('TOPPADDING', (0, 0), (-1, -1), 4),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
            ('GRID', (0, 0), (-1, -1), 0.4, GRID_COLOR),
        ]
        for row in range(2, len(data), 2):
            style.append(('BACKGROUND', (0, row), (-1, row), ROW_ALT))
        if right_align_from is not None:
            style.append(('ALIGN', (right_align_from, 0), (-1, -1), 'RIGHT'))
        if total_row and len(data) > 1:
            style.extend([
                ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
                ('LINEABOVE', (0, -1), (-1, -1), 1, BRAND_COLOR),
                ('BACKGROUND', (0, -1), (-1, -1), colors.white),
            ])
        table.setStyle(TableStyle(style))
        return table

    def transaction_rows(self, records: Sequence[TransactionRecord], kind: RecordKind) -> List[list]:
        """Header plus one row per record: date, name/description, concept, account, amount."""
        rows = [[
            'Fecha',
            'Cliente' if kind is RecordKind.INCOME else 'Descripción',
            'Producto / Servicio',
            'Cuenta',
            'Valor',
        ]]
        for record in records:
            rows.append([
                format_date(record.timestamp),
                record.display_name,
                record.concept,
                record.account or '',
                self.format_currency(record.amount),
            ])
        return rows

    def render_transaction_report(
        self,
        records: Sequence[TransactionRecord],
        kind: RecordKind,
        period: Tuple[date, date],
        output_dir: Path
    ) -> Path:
        """
        Render the sales ("Reporte de Ventas") or expense ("Reporte de Gastos") PDF.

        Args:
            records: Filtered records, newest first
            kind: Income or expense
            period: Inclusive (start, end) shown in the header
            output_dir: Directory for the file

        Returns:
            Path to "<Title>_<MM>_<YYYY>.pdf"
        """
        title = kind.report_title
        start, end = period
        story = [
            Paragraph(f"{title} - {format_period(start, end)}", self.styles['Heading2']),
            Spacer(1, 4 * mm),
        ]

        rows = self.transaction_rows(records, kind)
        total = sum(record.amount for record in records)
        rows.append(['TOTAL', f"{len(records)} registros", '', '', self.format_currency(total)])
        story.append(self._table(
            rows,
            col_widths=[24 * mm, 50 * mm, 45 * mm, 28 * mm, 33 * mm],
            right_align_from=4,
            total_row=True,
        ))

        return self._build(Path(output_dir) / report_filename(title, start), story)

    def render_invoice(self, order: Order, output_dir: Path, iva_rate: float = 0.0) -> Path:
        """
        Render an invoice receipt for an order.

        Args:
            order: Order to print
            output_dir: Directory for the file
            iva_rate: IVA fraction applied to the subtotal (0 by default)

        Returns:
            Path to "Factura_<id>.pdf"
        """
        items = parse_line_items(order.items_raw)
        title_style = ParagraphStyle('InvoiceTitle', parent=self.styles['Heading1'],
                                     alignment=TA_CENTER, textColor=BRAND_COLOR)
        story: list = [Paragraph("FACTURA", title_style), Spacer(1, 3 * mm)]

        info = Table([
            ['Factura No:', f"#{order.id}"],
            ['Fecha:', format_long_date(order.created_at)],
            ['Estado:', order.status],
        ], colWidths=[30 * mm, 90 * mm], hAlign='LEFT')
        info.setStyle(TableStyle([
            ('TEXTCOLOR', (0, 0), (0, -1), colors.grey),
            ('FONTNAME', (1, 0), (1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
        ]))
        story.extend([info, Spacer(1, 4 * mm)])

        story.append(Paragraph("<b>CLIENTE:</b>", self.styles['Normal']))
        story.append(Paragraph(escape(order.customer_name), self.styles['Normal']))
        if order.customer_phone:
            story.append(Paragraph(f"Tel: {escape(order.customer_phone)}", self.styles['Normal']))
        story.append(Spacer(1, 4 * mm))

        rows = [['#', 'Producto', 'Cant.', 'Precio Unit.', 'Subtotal']]
        for index, item in enumerate(items, start=1):
            has_price = item.unit_price > 0
            rows.append([
                index,
                item.name,
                f"{item.quantity:g}",
                self.format_currency(item.unit_price) if has_price else '-',
                self.format_currency(item.subtotal) if has_price else '-',
            ])
        story.append(self._table(rows, col_widths=[10 * mm, 80 * mm, 20 * mm, 35 * mm, 35 * mm],
                                 right_align_from=3))
        story.append(Spacer(1, 6 * mm))

        subtotal = order.total
        iva = subtotal * iva_rate
        totals = [['Subtotal:', self.format_currency(subtotal)]]
        if iva > 0:
            totals.append([f"IVA ({iva_rate * 100:.0f}%):", self.format_currency(iva)])
        totals.append(['TOTAL:', self.format_currency(subtotal + iva)])
        totals_table = Table(totals, colWidths=[30 * mm, 35 * mm], hAlign='RIGHT')
        totals_table.setStyle(TableStyle([
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('LINEABOVE', (0, 0), (-1, 0), 0.5, GRID_COLOR),
            ('LINEABOVE', (0, -1), (-1, -1), 0.5, BRAND_COLOR),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, -1), (-1, -1), 12),
        ]))
        story.extend([totals_table, Spacer(1, 15 * mm)])
        footer_style = ParagraphStyle('Footer', parent=self.styles['Normal'],
                                      alignment=TA_CENTER, textColor=colors.grey)
        story.append(Paragraph("¡Gracias por su compra!", footer_style))

        logger.info(f"Rendering invoice {order.id} with {len(items)} line items")
        return self._build(Path(output_dir) / invoice_filename(order.id), story)

    def create_monthly_chart(self, df: pd.DataFrame, title: str = "Ingresos y Egresos") -> Optional[BytesIO]:
        """
        Bar chart of monthly income vs expenses with a net line.

        Returns:
            PNG in a BytesIO, or None when there is no data
        """
        if df.empty:
            logger.warning("No data to plot monthly chart")
            return None

        fig, ax = plt.subplots(figsize=(10, 5))
        x = range(len(df))
        width = 0.35
        ax.bar([i - width / 2 for i in x], df['income'], width, label='Ingresos', color='#2ecc71')
        ax.bar([i + width / 2 for i in x], df['expenses'], width, label='Egresos', color='#e74c3c')
        ax.plot(list(x), df['net'], color='#155153', marker='o', linewidth=2, label='Balance')
        ax.axhline(y=0, color='gray', linestyle='--', linewidth=0.5)
        ax.set_title(title, fontsize=13, fontweight='bold')
        ax.set_xticks(list(x))
        ax.set_xticklabels(df['period'], rotation=45, ha='right')
        ax.legend()
        ax.grid(True, alpha=0.3, axis='y')
        plt.tight_layout()

        buf = BytesIO()
        fig.savefig(buf, format='png', dpi=120, bbox_inches='tight')
        plt.close(fig)
        buf.seek(0)
        return buf

    def render_monthly_report(self, breakdown: pd.DataFrame, year: int, output_dir: Path) -> Path:
        """
        Render the yearly summary: month table plus chart.

        Args:
            breakdown: Output of aggregator.monthly_breakdown
            year: Reported year
            output_dir: Directory for the file

        Returns:
            Path to "Resumen_Mensual_<YYYY>.pdf"
        """
        story: list = [Paragraph(f"Resumen Mensual {year}", self.styles['Heading2']), Spacer(1, 4 * mm)]

        rows = [['Periodo', 'Ingresos', 'Egresos', 'Balance', 'Margen']]
        for _, row in breakdown.iterrows():
            rows.append([
                row['period'],
                self.format_currency(row['income']),
                self.format_currency(row['expenses']),
                self.format_currency(row['net']),
                format_percentage(row['margin']),
            ])
        if not breakdown.empty:
            income = float(breakdown['income'].sum())
            expenses = float(breakdown['expenses'].sum())
            net = income - expenses
            rows.append([
                'TOTAL',
                self.format_currency(income),
                self.format_currency(expenses),
                self.format_currency(net),
                format_percentage(net / income * 100 if income else 0.0),
            ])
        story.append(self._table(rows, right_align_from=1, total_row=not breakdown.empty))

        chart = self.create_monthly_chart(breakdown)
        if chart is not None:
            story.extend([Spacer(1, 6 * mm), Image(chart, width=170 * mm, height=85 * mm)])

        return self._build(Path(output_dir) / f"Resumen_Mensual_{year}.pdf", story)

    def generate_summary_report(self, result: AggregateResult, period_label: str) -> str:
        """
        Plain-text summary of an aggregate.

        Args:
            result: Totals to print
            period_label: Period shown in the heading

        Returns:
            Formatted text report
        """
        report_lines = [
            "=" * 60,
            f"RESUMEN ({period_label})",
            "=" * 60,
            f"Total Ingresos:   {self.format_currency(result.total_income):>20}  ({result.transaction_count} transacciones)",
            f"Total Egresos:    {self.format_currency(result.total_expense):>20}",
            "-" * 60,
            f"Balance:          {self.format_currency(result.balance):>20}",
            f"Margen:           {format_percentage(result.margin_percent):>20}",
            "=" * 60,
        ]
        return "\n".join(report_lines)
