"""
Drawer/form controller for creating and editing POS records.

A drawer moves CLOSED -> OPEN -> SUBMITTING and ends either CLOSED (saved)
or back in OPEN with an error, values intact, so the user can retry.
Field validation errors stay next to their fields; only server and
network failures produce a toast.
"""

import enum
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from api_client import ResourceService, extract_error_message
from exceptions import ApiError, FormValidationError, ReportError, ViewError
from formatting import to_amount
from models import (
    GENERIC_CUSTOMER_FIRST_NAME,
    GENERIC_CUSTOMER_LAST_NAME,
    GENERIC_CUSTOMER_NAME,
    CatalogItem,
    Certificate,
    Order,
    TransactionRecord,
)
from report_generator import ReportGenerator

logger = logging.getLogger(__name__)

HAS_CUSTOMER = "has_customer"
THOUSANDS_GROUPED = re.compile(r"^\d{1,3}(\.\d{3})+$")


class DrawerState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    SUBMITTING = "submitting"


class Notifier:
    """
    Toast notifications.

    The default implementation logs and keeps the messages so a UI (or a
    test) can display them.
    """

    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    def _push(self, level: str, message: str) -> None:
        self.messages.append((level, message))

    def success(self, message: str) -> None:
        logger.info(message)
        self._push("success", message)

    def info(self, message: str) -> None:
        logger.info(message)
        self._push("info", message)

    def error(self, message: str) -> None:
        logger.error(message)
        self._push("error", message)


@dataclass(frozen=True)
class FieldRule:
    """
    Validation rule for one form field.

    Attributes:
        name: Field key in the form values
        message: Error shown next to the field
        required: Whether a blank value fails
        validator: Extra check run on non-blank values
    """
    name: str
    message: str
    required: bool = True
    validator: Optional[Callable[[Any], bool]] = None

    def check(self, values: Dict[str, Any]) -> Optional[str]:
        value = values.get(self.name)
        if is_blank(value):
            return self.message if self.required else None
        if self.validator is not None and not self.validator(value):
            return self.message
        return None


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def parse_amount_input(value: Any) -> Optional[float]:
    """
    Parse a typed amount such as "45000", "$ 45.000", "$ 1.250,50" or "-$ 10.000".

    Dots are es-CO thousands separators when a comma is present or when
    they group exactly three digits; otherwise a dot is a decimal point.
    A minus sign before the first digit keeps the amount negative.

    Returns None when nothing numeric remains.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if value is None:
        return None
    text = str(value).strip()
    first_digit = re.search(r"\d", text)
    if first_digit is None:
        return None
    negative = "-" in text[:first_digit.start()]
    number = re.sub(r"[^\d.,]", "", text)
    if "," in number:
        number = number.replace(".", "").replace(",", ".", 1).replace(",", "")
    elif THOUSANDS_GROUPED.match(number):
        number = number.replace(".", "")
    try:
        amount = float(number)
    except ValueError:
        return None
    return -amount if negative else amount


def is_non_negative_amount(value: Any) -> bool:
    amount = parse_amount_input(value)
    return amount is not None and amount >= 0


def validate_values(rules: Sequence[FieldRule], values: Dict[str, Any]) -> None:
    """
    Run every rule and raise once with all failing fields.

    Raises:
        FormValidationError: If any rule fails
    """
    errors = {}
    for rule in rules:
        message = rule.check(values)
        if message:
            errors[rule.name] = message
    if errors:
        raise FormValidationError(errors)


def split_full_name(full_name: str) -> Tuple[str, str]:
    """
    Split "First Middle Last" into ("First Middle", "Last").

    A single word becomes (word, "."); an empty name becomes the generic
    customer. Multi-word surnames are not recoverable this way, which is
    why explicit nombre/apellido fields take precedence when provided.
    """
    parts = (full_name or "").split()
    if len(parts) > 1:
        return " ".join(parts[:-1]), parts[-1]
    if parts:
        return parts[0], "."
    return GENERIC_CUSTOMER_FIRST_NAME, "."


def compute_total(selected: Sequence[str], catalog: Sequence[CatalogItem]) -> float:
    """Sum catalog unit prices of the selected product names (unknown names count 0)."""
    prices = {item.name: item.price for item in catalog}
    return float(sum(prices.get(name, 0.0) for name in selected))


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part) for part in value]


class FormSchema:
    """Base class describing one drawer form."""

    create_message = "Registro guardado correctamente"
    update_message = "Registro actualizado correctamente"

    def rules(self, values: Dict[str, Any]) -> List[FieldRule]:
        raise NotImplementedError

    def defaults(self, user_name: str, default_account: Optional[str], now: datetime) -> Dict[str, Any]:
        return {"vendedor": user_name}

    def values_from_record(self, record: Any) -> Dict[str, Any]:
        raise NotImplementedError

    def build_payload(self, values: Dict[str, Any], user_name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def on_values_change(
        self,
        changed: Dict[str, Any],
        values: Dict[str, Any],
        catalog: Sequence[CatalogItem]
    ) -> Dict[str, Any]:
        """Derived field updates triggered by a change (none by default)."""
        return {}


class IncomeForm(FormSchema):
    """Sale (ingreso): products from the catalog, payment account, optional customer."""

    create_message = "Venta registrada exitosamente"
    update_message = "Venta actualizada correctamente"

    def rules(self, values: Dict[str, Any]) -> List[FieldRule]:
        rules = [
            FieldRule("tipo", "Seleccione al menos un producto"),
            FieldRule("cuenta", "Requerido"),
            FieldRule("valor", "El valor debe ser un número positivo", validator=is_non_negative_amount),
        ]
        if values.get(HAS_CUSTOMER):
            rules.extend([
                FieldRule("nombreCompleto", "Ingrese el nombre"),
                FieldRule("numeroDeDocumento", "Falta el documento"),
            ])
        return rules

    def defaults(self, user_name: str, default_account: Optional[str], now: datetime) -> Dict[str, Any]:
        return {
            "vendedor": user_name,
            "tipoDeDocumento": "C.C",
            "valor": 0,
            "cuenta": default_account,
            "createdAt": now.isoformat(),
            HAS_CUSTOMER: False,
        }

    def values_from_record(self, record: TransactionRecord) -> Dict[str, Any]:
        # The stored name parts are rebuilt from nombreCompleto on save.
        values = {k: v for k, v in record.raw.items() if k not in ("nombre", "apellido")}
        values.update({
            "tipo": _as_list(record.concept),
            "valor": record.amount,
            "cuenta": record.account,
            "vendedor": record.seller,
            "nombreCompleto": record.full_name,
            "tipoDeDocumento": record.document_type or "C.C",
            "numeroDeDocumento": record.document_number,
            HAS_CUSTOMER: record.has_customer,
        })
        return values

    def on_values_change(self, changed, values, catalog):
        if "tipo" in changed and "valor" not in changed:
            return {"valor": compute_total(_as_list(values.get("tipo")), catalog)}
        return {}

    def build_payload(self, values: Dict[str, Any], user_name: str) -> Dict[str, Any]:
        payload = {k: v for k, v in values.items() if k not in (HAS_CUSTOMER, "nombreCompleto", "_id", "id")}
        products = _as_list(values.get("tipo"))
        payload["tipo"] = products
        payload["producto"] = ", ".join(products)
        payload["valor"] = parse_amount_input(values.get("valor")) or 0.0
        payload["vendedor"] = values.get("vendedor") or user_name

        if values.get(HAS_CUSTOMER):
            if values.get("nombre") and values.get("apellido"):
                payload["nombre"] = values["nombre"].strip()
                payload["apellido"] = values["apellido"].strip()
            else:
                payload["nombre"], payload["apellido"] = split_full_name(values.get("nombreCompleto", ""))
        else:
            payload.update({
                "nombre": GENERIC_CUSTOMER_FIRST_NAME,
                "apellido": GENERIC_CUSTOMER_LAST_NAME,
                "numeroDeDocumento": "0",
                "tipoDeDocumento": "N/A",
            })
        return payload


class ExpenseForm(FormSchema):
    """Expense (egreso): date, amount, account and description, all required."""

    create_message = "Egreso registrado correctamente"
    update_message = "Egreso actualizado correctamente"

    def rules(self, values: Dict[str, Any]) -> List[FieldRule]:
        return [
            FieldRule("fecha", "Por favor seleccione la fecha"),
            FieldRule("valor", "El valor debe ser positivo", validator=is_non_negative_amount),
            FieldRule("cuenta", "Por favor seleccione una cuenta"),
            FieldRule("descripcion", "Por favor ingrese una descripción"),
        ]

    def defaults(self, user_name: str, default_account: Optional[str], now: datetime) -> Dict[str, Any]:
        return {"vendedor": user_name, "fecha": now.date().isoformat(), "cuenta": default_account}

    def values_from_record(self, record: TransactionRecord) -> Dict[str, Any]:
        stamp = record.timestamp
        return {
            "fecha": stamp.date().isoformat() if stamp else record.timestamp_value,
            "valor": record.amount,
            "cuenta": record.account,
            "descripcion": record.description,
            "vendedor": record.seller,
        }

    def build_payload(self, values: Dict[str, Any], user_name: str) -> Dict[str, Any]:
        fecha = values.get("fecha")
        if isinstance(fecha, (date, datetime)):
            fecha = fecha.isoformat()
        return {
            "fecha": fecha,
            "valor": parse_amount_input(values.get("valor")) or 0.0,
            "cuenta": values.get("cuenta"),
            "descripcion": str(values.get("descripcion", "")).strip(),
            "vendedor": values.get("vendedor") or user_name,
        }


class CertificateForm(FormSchema):
    """Certificate client registration."""

    create_message = "Certificado registrado correctamente"
    update_message = "Certificado actualizado correctamente"

    def rules(self, values: Dict[str, Any]) -> List[FieldRule]:
        return [
            FieldRule("nombre", "Por favor ingrese el nombre"),
            FieldRule("apellido", "Por favor ingrese el apellido"),
            FieldRule("numeroDeDocumento", "Por favor ingrese el número de documento"),
            FieldRule("tipo", "Por favor seleccione al menos un tipo de certificado"),
            FieldRule("valor", "El valor debe ser un número positivo", validator=is_non_negative_amount),
            FieldRule("cuenta", "Por favor seleccione una cuenta"),
        ]

    def values_from_record(self, record: Certificate) -> Dict[str, Any]:
        return {
            "nombre": record.first_name,
            "apellido": record.last_name,
            "numeroDeDocumento": record.document_number,
            "tipo": list(record.types),
            "valor": record.amount,
            "cuenta": record.account,
            "vendedor": record.seller,
        }

    def build_payload(self, values: Dict[str, Any], user_name: str) -> Dict[str, Any]:
        payload = dict(values)
        payload["tipo"] = _as_list(values.get("tipo"))
        payload["vendedor"] = user_name or values.get("vendedor")
        payload["valor"] = parse_amount_input(values.get("valor")) or 0.0
        return payload


def receipt_order(saved: Dict[str, Any], catalog: Sequence[CatalogItem]) -> Order:
    """
    Build the invoice order for a just-saved sale.

    Each selected product becomes one line at its catalog price.
    """
    prices = {item.name: item.price for item in catalog}
    items = [
        {"producto": name, "cantidad": 1, "precio": prices.get(name, 0.0)}
        for name in _as_list(saved.get("tipo") or saved.get("producto"))
    ]
    customer = f"{saved.get('nombre', '')} {saved.get('apellido', '')}".strip()
    if customer in ("", GENERIC_CUSTOMER_NAME):
        customer = GENERIC_CUSTOMER_NAME
    return Order(
        id=str(saved.get("_id") or saved.get("id") or "borrador"),
        created_at=saved.get("createdAt"),
        status=saved.get("estado") or "PAGADO",
        customer_name=customer,
        total=to_amount(saved.get("valor")),
        items_raw=items,
    )


class DrawerController:
    """
    Orchestrates one drawer: open, validate, submit, close.

    Usage:
        drawer = DrawerController(IncomeForm(), ingresos_service, on_success=view.refresh)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi")
        drawer.submit()
    """

    def __init__(
        self,
        form: FormSchema,
        service: ResourceService,
        notifier: Optional[Notifier] = None,
        on_success: Optional[Callable[[Dict[str, Any]], None]] = None,
        user_name: str = "",
        default_account: Optional[str] = "Efectivo",
        catalog_loader: Optional[Callable[[], List[CatalogItem]]] = None,
        report_generator: Optional[ReportGenerator] = None,
        receipt_dir: Optional[Path] = None,
        iva_rate: float = 0.0,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.form = form
        self.service = service
        self.notifier = notifier or Notifier()
        self.on_success = on_success
        self.user_name = user_name
        self.default_account = default_account
        self.catalog_loader = catalog_loader
        self.report_generator = report_generator
        self.receipt_dir = receipt_dir
        self.iva_rate = iva_rate
        self.clock = clock

        self.state = DrawerState.CLOSED
        self.values: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}
        self.editing_id: Optional[str] = None
        self.catalog: List[CatalogItem] = []
        self.last_receipt: Optional[Path] = None

    @property
    def is_editing(self) -> bool:
        return self.editing_id is not None

    def _load_catalog(self) -> None:
        if self.catalog_loader is None:
            return
        try:
            self.catalog = list(self.catalog_loader())
        except ApiError as e:
            logger.error(f"Catalog load failed: {e}")
            self.catalog = []
            self.notifier.error("No se pudo cargar la lista de productos.")

    def open_for_create(self) -> None:
        """Open with a blank form and defaults (seller, timestamp, account)."""
        self._load_catalog()
        self.values = self.form.defaults(self.user_name, self.default_account, self.clock())
        self.errors = {}
        self.editing_id = None
        self.state = DrawerState.OPEN

    def open_for_edit(self, record: Any) -> None:
        """Open populated from an existing record."""
        self._load_catalog()
        self.values = self.form.values_from_record(record)
        self.errors = {}
        self.editing_id = record.id
        self.state = DrawerState.OPEN

    def close(self) -> None:
        """Close and reset the form."""
        self.state = DrawerState.CLOSED
        self.values = {}
        self.errors = {}
        self.editing_id = None

    def set_values(self, **changes: Any) -> None:
        """Apply user edits plus any derived updates (e.g. total from products)."""
        if self.state is not DrawerState.OPEN:
            raise ViewError("Drawer is not open", details={"state": self.state.value})
        self.values.update(changes)
        self.values.update(self.form.on_values_change(changes, self.values, self.catalog))
        for name in changes:
            self.errors.pop(name, None)

    def validate(self) -> bool:
        """Validate current values; field errors land in self.errors."""
        try:
            validate_values(self.form.rules(self.values), self.values)
        except FormValidationError as e:
            self.errors = e.field_errors
            logger.debug(f"Validation failed: {e}")
            return False
        self.errors = {}
        return True

    def submit(self, generate_receipt: bool = False) -> Optional[Dict[str, Any]]:
        """
        Validate and save.

        Args:
            generate_receipt: Render an invoice PDF after a successful save

        Returns:
            The saved record (payload merged with the server response), or
            None when validation or the request failed (drawer stays open)
        """
        if self.state is not DrawerState.OPEN:
            raise ViewError("Drawer is not open", details={"state": self.state.value})
        if not self.validate():
            return None

        self.state = DrawerState.SUBMITTING
        payload = self.form.build_payload(self.values, self.user_name)
        try:
            if self.editing_id:
                response = self.service.update(self.editing_id, payload)
                message = self.form.update_message
            else:
                response = self.service.create(payload)
                message = self.form.create_message
        except ApiError as e:
            self.state = DrawerState.OPEN
            self.notifier.error(f"Error: {extract_error_message(e)}")
            return None

        saved = {**payload, **(response or {})}
        self.notifier.success(message)

        if generate_receipt:
            self._render_receipt(saved)

        if self.on_success:
            self.on_success(saved)
        self.close()
        return saved

    def _render_receipt(self, saved: Dict[str, Any]) -> None:
        if self.report_generator is None or self.receipt_dir is None:
            logger.warning("Receipt requested but no report generator configured")
            return
        self.notifier.info("Generando factura PDF...")
        try:
            self.last_receipt = self.report_generator.render_invoice(
                receipt_order(saved, self.catalog), self.receipt_dir, iva_rate=self.iva_rate
            )
        except ReportError as e:
            self.notifier.error(f"No se pudo generar la factura: {e.message}")
            return
        self.notifier.success("Factura descargada exitosamente")
