"""
Domain models for POS income/expense records, invoices and certificates.

The backend speaks Spanish JSON (``valor``, ``cuenta``, ``producto``...);
the ``from_api`` / ``to_payload`` helpers are the only place that knows
those keys.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from exceptions import FilterError
from formatting import parse_timestamp, to_amount

logger = logging.getLogger(__name__)

GENERIC_CUSTOMER_FIRST_NAME = "Cliente"
GENERIC_CUSTOMER_LAST_NAME = "General"
GENERIC_CUSTOMER_NAME = f"{GENERIC_CUSTOMER_FIRST_NAME} {GENERIC_CUSTOMER_LAST_NAME}"


class RecordKind(enum.Enum):
    """Kind of POS transaction record."""
    INCOME = "ingresos"
    EXPENSE = "egresos"

    @property
    def timestamp_field(self) -> str:
        """API attribute holding the record date for this kind."""
        return "createdAt" if self is RecordKind.INCOME else "fecha"

    @property
    def report_title(self) -> str:
        return "Reporte de Ventas" if self is RecordKind.INCOME else "Reporte de Gastos"


class Account(enum.Enum):
    """Accounts a payment can land in."""
    NEQUI = "Nequi"
    DAVIPLATA = "Daviplata"
    BANCOLOMBIA = "Bancolombia"
    EFECTIVO = "Efectivo"
    OTRA = "Otra"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


DOCUMENT_TYPES = ("C.C", "T.I", "Pasaporte", "C.E", "PPT")

CERTIFICATE_TYPES = ("Manipulación de alimentos", "Aseo Hospitalario")


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass
class TransactionRecord:
    """
    One income (venta) or expense (gasto) record.

    ``timestamp_value`` holds the raw value of the kind-specific date
    attribute (``createdAt`` for income, ``fecha`` for expense).
    """
    kind: RecordKind
    id: Optional[str] = None
    timestamp_value: Any = None
    amount: float = 0.0
    account: Optional[str] = None
    concept: str = ""
    description: str = ""
    first_name: str = ""
    last_name: str = ""
    document_type: str = ""
    document_number: str = ""
    payment_reference: str = ""
    customer_email: str = ""
    seller: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    tz: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def timestamp(self) -> Optional[datetime]:
        """Parsed timestamp, or None when absent or unparsable."""
        return parse_timestamp(self.timestamp_value, self.tz)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def display_name(self) -> str:
        """Customer name for income, description for expense."""
        if self.kind is RecordKind.INCOME:
            return self.full_name
        return self.description

    @property
    def has_customer(self) -> bool:
        """True when the record names a real customer rather than the placeholder."""
        if not self.first_name:
            return False
        if self.first_name == GENERIC_CUSTOMER_FIRST_NAME and self.last_name in ("", GENERIC_CUSTOMER_LAST_NAME, "."):
            return False
        return self.full_name != GENERIC_CUSTOMER_NAME

    @classmethod
    def from_api(
        cls,
        payload: Dict[str, Any],
        kind: RecordKind,
        tz: Optional[str] = None
    ) -> "TransactionRecord":
        """
        Build a record from a backend document.

        Args:
            payload: JSON object from /ingresos or /egresos
            kind: Which collection the payload came from
            tz: Display timezone used when comparing dates

        Returns:
            TransactionRecord with the raw payload attached
        """
        record_id = payload.get("_id", payload.get("id"))
        concept = _clean(payload.get("producto")) or _clean(payload.get("concepto"))
        return cls(
            kind=kind,
            id=str(record_id) if record_id is not None else None,
            timestamp_value=payload.get(kind.timestamp_field),
            amount=to_amount(payload.get("valor")),
            account=payload.get("cuenta") or None,
            concept=concept,
            description=_clean(payload.get("descripcion")),
            first_name=_clean(payload.get("nombre")),
            last_name=_clean(payload.get("apellido")),
            document_type=_clean(payload.get("tipoDeDocumento") or payload.get("tipoDocumento")),
            document_number=_clean(payload.get("numeroDeDocumento")),
            payment_reference=_clean(payload.get("payment_reference")),
            customer_email=_clean(payload.get("customer_email")),
            seller=_clean(payload.get("vendedor")),
            raw=dict(payload),
            tz=tz,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back to the backend shape (full-record replace)."""
        payload: Dict[str, Any] = {
            "valor": self.amount,
            "cuenta": self.account,
            "vendedor": self.seller,
        }
        if self.timestamp_value is not None:
            stamp = self.timestamp_value
            if isinstance(stamp, (date, datetime)):
                stamp = stamp.isoformat()
            payload[self.kind.timestamp_field] = stamp
        if self.kind is RecordKind.INCOME:
            payload.update({
                "producto": self.concept,
                "nombre": self.first_name,
                "apellido": self.last_name,
                "tipoDeDocumento": self.document_type,
                "numeroDeDocumento": self.document_number,
            })
            if self.payment_reference:
                payload["payment_reference"] = self.payment_reference
            if self.customer_email:
                payload["customer_email"] = self.customer_email
        else:
            payload["descripcion"] = self.description
            if self.concept:
                payload["producto"] = self.concept
        return payload


FACET_DATE = "date"
FACET_DAY = "day"
FACET_ACCOUNT = "account"
FACET_CONCEPT = "concept"
FACET_TEXT = "text"
ALL_FACETS: FrozenSet[str] = frozenset({FACET_DATE, FACET_DAY, FACET_ACCOUNT, FACET_CONCEPT, FACET_TEXT})


@dataclass(frozen=True)
class FilterState:
    """
    Transient filter selection for a record list.

    ``date_range`` bounds are inclusive at day granularity. All other
    facets are optional; None (or empty text) means the facet is inactive.
    """
    date_range: Optional[Tuple[date, date]] = None
    account: Optional[str] = None
    concept: Optional[str] = None
    free_text: Optional[str] = None
    day_of_month: Optional[int] = None

    def __post_init__(self) -> None:
        if self.date_range is not None:
            start, end = self.date_range
            start_day = start.date() if isinstance(start, datetime) else start
            end_day = end.date() if isinstance(end, datetime) else end
            if start_day > end_day:
                raise FilterError(
                    "Start date must be before or equal to end date",
                    details={"start": start_day, "end": end_day}
                )
            object.__setattr__(self, "date_range", (start_day, end_day))
        if self.day_of_month is not None and not 1 <= int(self.day_of_month) <= 31:
            raise FilterError(
                "Day of month must be between 1 and 31",
                details={"day_of_month": self.day_of_month}
            )

    @property
    def active_facets(self) -> FrozenSet[str]:
        active = set()
        if self.date_range is not None:
            active.add(FACET_DATE)
        if self.day_of_month is not None:
            active.add(FACET_DAY)
        if self.account:
            active.add(FACET_ACCOUNT)
        if self.concept:
            active.add(FACET_CONCEPT)
        if self.free_text:
            active.add(FACET_TEXT)
        return frozenset(active)

    def reset(self) -> "FilterState":
        """Clear every facet at once, keeping the date range."""
        return FilterState(date_range=self.date_range)

    def restricted_to(self, facets: FrozenSet[str]) -> "FilterState":
        """Return a copy where only the named facets stay active."""
        return replace(
            self,
            date_range=self.date_range if FACET_DATE in facets else None,
            account=self.account if FACET_ACCOUNT in facets else None,
            concept=self.concept if FACET_CONCEPT in facets else None,
            free_text=self.free_text if FACET_TEXT in facets else None,
            day_of_month=self.day_of_month if FACET_DAY in facets else None,
        )


@dataclass(frozen=True)
class AggregateResult:
    """Totals derived from a filtered record set."""
    total_income: float
    total_expense: float
    balance: float
    margin_percent: float
    transaction_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_income": self.total_income,
            "total_expense": self.total_expense,
            "balance": self.balance,
            "margin_percent": self.margin_percent,
            "transaction_count": self.transaction_count,
        }


@dataclass(frozen=True)
class CatalogItem:
    """Inventory product with its unit price (``monto``)."""
    name: str
    price: float
    id: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "CatalogItem":
        item_id = payload.get("_id", payload.get("id"))
        return cls(
            name=_clean(payload.get("nombre")),
            price=to_amount(payload.get("monto")),
            id=str(item_id) if item_id is not None else None,
        )


@dataclass(frozen=True)
class LineItem:
    """Invoice line: quantity times unit price."""
    name: str
    quantity: float
    unit_price: float

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "LineItem":
        return cls(
            name=_clean(payload.get("producto") or payload.get("nombre")) or "Producto",
            quantity=to_amount(payload.get("cantidad")),
            unit_price=to_amount(payload.get("precio")),
        )


@dataclass
class Order:
    """POS order (pedido) as printed on an invoice."""
    id: str
    created_at: Any = None
    status: str = "PENDIENTE"
    customer_name: str = GENERIC_CUSTOMER_NAME
    customer_phone: str = ""
    total: float = 0.0
    items_raw: Any = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Order":
        return cls(
            id=str(payload.get("id", payload.get("_id", ""))),
            created_at=payload.get("fecha_creacion"),
            status=_clean(payload.get("estado")) or "PENDIENTE",
            customer_name=_clean(payload.get("cliente_nombre")) or GENERIC_CUSTOMER_NAME,
            customer_phone=_clean(payload.get("cliente_telefono")),
            total=to_amount(payload.get("total")),
            items_raw=payload.get("items_detalle"),
        )


@dataclass
class Certificate:
    """Certificate client registered by a seller."""
    id: Optional[str]
    first_name: str
    last_name: str
    document_number: str
    types: List[str]
    amount: float
    account: Optional[str]
    seller: str
    created_at: Any = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Certificate":
        raw_types = payload.get("tipo") or []
        if isinstance(raw_types, str):
            raw_types = [part.strip() for part in raw_types.split(",") if part.strip()]
        cert_id = payload.get("_id", payload.get("id"))
        return cls(
            id=str(cert_id) if cert_id is not None else None,
            first_name=_clean(payload.get("nombre")),
            last_name=_clean(payload.get("apellido")),
            document_number=_clean(payload.get("numeroDeDocumento")),
            types=list(raw_types),
            amount=to_amount(payload.get("valor")),
            account=payload.get("cuenta") or None,
            seller=_clean(payload.get("vendedor")),
            created_at=payload.get("createdAt"),
        )
