"""
Unit tests for the drawer/form controller.
"""

import json
from datetime import datetime
from unittest.mock import MagicMock

import httpx
import pytest

from api_client import ApiClient, ResourceService, TransactionService
from exceptions import ApiError, FormValidationError, ViewError
from form_controller import (
    HAS_CUSTOMER,
    CertificateForm,
    DrawerController,
    DrawerState,
    ExpenseForm,
    FieldRule,
    IncomeForm,
    Notifier,
    compute_total,
    parse_amount_input,
    receipt_order,
    split_full_name,
    validate_values,
)
from models import CatalogItem, RecordKind, TransactionRecord
from report_generator import ReportGenerator

CATALOG = [CatalogItem(name="Curso", price=45000), CatalogItem(name="Kit", price=5000)]
FIXED_NOW = datetime(2024, 3, 5, 14, 30)


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def service():
    return MagicMock(spec=ResourceService)


def make_drawer(form, service, notifier, **kwargs):
    return DrawerController(
        form,
        service,
        notifier=notifier,
        user_name="ana",
        clock=lambda: FIXED_NOW,
        **kwargs
    )


class TestHelpers:
    """Test payload helper functions."""

    @pytest.mark.parametrize("full_name,expected", [
        ("Laura Gómez", ("Laura", "Gómez")),
        ("Ana María de la Cruz", ("Ana María de la", "Cruz")),
        ("  Pedro  ", ("Pedro", ".")),
        ("", ("Cliente", ".")),
    ])
    def test_split_full_name(self, full_name, expected):
        assert split_full_name(full_name) == expected

    def test_compute_total(self):
        assert compute_total(["Curso", "Kit", "Desconocido"], CATALOG) == 50000

    @pytest.mark.parametrize("raw,expected", [
        ("$ 45.000", 45000.0),
        ("45000", 45000.0),
        ("$ 1.250,50", 1250.5),
        ("1250.5", 1250.5),
        ("-5000", -5000.0),
        ("-$ 10.000", -10000.0),
        (1200, 1200.0),
        ("abc", None),
        (None, None),
    ])
    def test_parse_amount_input(self, raw, expected):
        assert parse_amount_input(raw) == expected

    def test_validate_values_collects_all_errors(self):
        rules = [FieldRule("a", "A requerido"), FieldRule("b", "B positivo", validator=lambda v: v > 0)]
        with pytest.raises(FormValidationError) as exc_info:
            validate_values(rules, {"a": "  ", "b": -1})
        assert exc_info.value.field_errors == {"a": "A requerido", "b": "B positivo"}

    def test_optional_rule_skips_blank(self):
        validate_values([FieldRule("a", "msg", required=False, validator=lambda v: False)], {})

    def test_receipt_order_uses_catalog_prices(self):
        order = receipt_order({"_id": "x1", "tipo": ["Curso", "Kit"], "valor": 50000,
                               "nombre": "Cliente", "apellido": "General"}, CATALOG)
        assert order.id == "x1"
        assert order.customer_name == "Cliente General"
        assert [item["precio"] for item in order.items_raw] == [45000, 5000]


class TestDrawerLifecycle:
    """Test opening, validation and submission."""

    def test_open_for_create_sets_defaults(self, service, notifier):
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_create()
        assert drawer.state is DrawerState.OPEN
        assert drawer.values["vendedor"] == "ana"
        assert drawer.values["cuenta"] == "Efectivo"
        assert drawer.values["tipoDeDocumento"] == "C.C"
        assert drawer.values["valor"] == 0
        assert drawer.values["createdAt"] == FIXED_NOW.isoformat()
        assert drawer.is_editing is False

    def test_certificate_blank_name_issues_no_request(self, service, notifier):
        drawer = make_drawer(CertificateForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(nombre="", apellido="Ruiz", numeroDeDocumento="123",
                          tipo=["Aseo Hospitalario"], valor=30000, cuenta="Nequi")

        assert drawer.submit() is None
        assert drawer.state is DrawerState.OPEN
        assert "nombre" in drawer.errors
        assert notifier.messages == []
        service.create.assert_not_called()

    def test_income_with_customer_requires_name(self, service, notifier):
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi", **{HAS_CUSTOMER: True})
        assert drawer.validate() is False
        assert set(drawer.errors) == {"nombreCompleto", "numeroDeDocumento"}
        service.create.assert_not_called()

    def test_selecting_products_recomputes_total(self, service, notifier):
        drawer = make_drawer(IncomeForm(), service, notifier, catalog_loader=lambda: CATALOG)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso", "Kit"])
        assert drawer.values["valor"] == 50000

    def test_create_without_customer_uses_placeholder(self, service, notifier):
        service.create.return_value = {"_id": "new"}
        on_success = MagicMock()
        drawer = make_drawer(IncomeForm(), service, notifier, on_success=on_success,
                             catalog_loader=lambda: CATALOG)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi")

        saved = drawer.submit()

        payload = service.create.call_args.args[0]
        assert payload["nombre"] == "Cliente"
        assert payload["apellido"] == "General"
        assert payload["numeroDeDocumento"] == "0"
        assert payload["tipoDeDocumento"] == "N/A"
        assert payload["producto"] == "Curso"
        assert payload["valor"] == 45000
        assert HAS_CUSTOMER not in payload
        assert saved["_id"] == "new"
        on_success.assert_called_once_with(saved)
        assert notifier.messages == [("success", "Venta registrada exitosamente")]
        assert drawer.state is DrawerState.CLOSED
        assert drawer.values == {}

    def test_create_with_customer_splits_name(self, service, notifier):
        service.create.return_value = {}
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi", valor="45000", nombreCompleto="Ana María Ruiz",
                          numeroDeDocumento="99", **{HAS_CUSTOMER: True})
        drawer.submit()
        payload = service.create.call_args.args[0]
        assert (payload["nombre"], payload["apellido"]) == ("Ana María", "Ruiz")
        assert "nombreCompleto" not in payload

    def test_explicit_name_fields_win(self, service, notifier):
        service.create.return_value = {}
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi", nombreCompleto="Ana María de la Cruz",
                          nombre="Ana María", apellido="de la Cruz", numeroDeDocumento="99",
                          **{HAS_CUSTOMER: True})
        drawer.submit()
        payload = service.create.call_args.args[0]
        assert (payload["nombre"], payload["apellido"]) == ("Ana María", "de la Cruz")

    def test_edit_updates_by_id(self, service, notifier):
        service.update.return_value = {"_id": "i1"}
        record = TransactionRecord.from_api({
            "_id": "i1", "createdAt": "2024-03-05T10:00:00", "valor": 45000, "cuenta": "Nequi",
            "producto": "Curso", "nombre": "Laura", "apellido": "Gómez", "numeroDeDocumento": "1",
        }, RecordKind.INCOME)
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_edit(record)
        assert drawer.values[HAS_CUSTOMER] is True
        assert drawer.values["nombreCompleto"] == "Laura Gómez"
        assert drawer.values["tipo"] == ["Curso"]

        drawer.submit()

        service.update.assert_called_once()
        assert service.update.call_args.args[0] == "i1"
        service.create.assert_not_called()
        assert notifier.messages[-1] == ("success", "Venta actualizada correctamente")

    def test_edit_placeholder_customer_toggle_off(self, service, notifier):
        record = TransactionRecord.from_api({"_id": "i2", "nombre": "Cliente", "apellido": "General"},
                                            RecordKind.INCOME)
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_edit(record)
        assert drawer.values[HAS_CUSTOMER] is False

    def test_edit_renamed_customer_sends_new_name(self, service, notifier):
        service.update.return_value = {"_id": "i1"}
        record = TransactionRecord.from_api({
            "_id": "i1", "createdAt": "2024-03-05T10:00:00", "valor": 45000, "cuenta": "Nequi",
            "producto": "Curso", "nombre": "Laura", "apellido": "Gómez", "numeroDeDocumento": "1",
        }, RecordKind.INCOME)
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_edit(record)
        drawer.set_values(nombreCompleto="María López")

        drawer.submit()

        payload = service.update.call_args.args[1]
        assert (payload["nombre"], payload["apellido"]) == ("María", "López")

    def test_edit_placeholder_to_real_customer(self, service, notifier):
        service.update.return_value = {"_id": "i2"}
        record = TransactionRecord.from_api({
            "_id": "i2", "valor": 30000, "cuenta": "Efectivo", "producto": "Curso",
            "nombre": "Cliente", "apellido": "General", "numeroDeDocumento": "0", "tipoDeDocumento": "N/A",
        }, RecordKind.INCOME)
        drawer = make_drawer(IncomeForm(), service, notifier)
        drawer.open_for_edit(record)
        drawer.set_values(nombreCompleto="Pedro Ruiz", numeroDeDocumento="77", tipoDeDocumento="C.C",
                          **{HAS_CUSTOMER: True})

        drawer.submit()

        payload = service.update.call_args.args[1]
        assert (payload["nombre"], payload["apellido"]) == ("Pedro", "Ruiz")
        assert payload["numeroDeDocumento"] == "77"

    def test_api_error_keeps_drawer_open(self, service, notifier):
        service.create.side_effect = ApiError("POST /egresos returned 400", status_code=400,
                                              server_message="Cuenta inválida")
        on_success = MagicMock()
        drawer = make_drawer(ExpenseForm(), service, notifier, on_success=on_success)
        drawer.open_for_create()
        drawer.set_values(valor="12000", descripcion="Taxi")

        assert drawer.submit() is None
        assert drawer.state is DrawerState.OPEN
        assert drawer.values["descripcion"] == "Taxi"
        assert notifier.messages == [("error", "Error: Cuenta inválida")]
        on_success.assert_not_called()

    def test_api_error_without_message_uses_fallback(self, service, notifier):
        service.create.side_effect = ApiError("network down")
        drawer = make_drawer(ExpenseForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(valor=1, descripcion="Taxi")
        drawer.submit()
        assert notifier.messages == [("error", "Error: Ocurrió un error inesperado.")]

    def test_expense_payload(self, service, notifier):
        service.create.return_value = {}
        drawer = make_drawer(ExpenseForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(valor="12000", descripcion="  Taxi ")
        drawer.submit()
        assert service.create.call_args.args[0] == {
            "fecha": "2024-03-05",
            "valor": 12000.0,
            "cuenta": "Efectivo",
            "descripcion": "Taxi",
            "vendedor": "ana",
        }

    def test_negative_expense_rejected(self, service, notifier):
        drawer = make_drawer(ExpenseForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(valor=-5, descripcion="Taxi")
        assert drawer.submit() is None
        assert "valor" in drawer.errors

    def test_negative_typed_expense_rejected(self, service, notifier):
        drawer = make_drawer(ExpenseForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(valor="-5000", descripcion="Taxi")
        assert drawer.submit() is None
        assert drawer.errors["valor"] == "El valor debe ser positivo"
        service.create.assert_not_called()

    def test_submit_when_closed_raises(self, service, notifier):
        drawer = make_drawer(ExpenseForm(), service, notifier)
        with pytest.raises(ViewError):
            drawer.submit()

    def test_catalog_failure_notifies_and_continues(self, service, notifier):
        def failing_loader():
            raise ApiError("GET /inventario returned 500", status_code=500)

        drawer = make_drawer(IncomeForm(), service, notifier, catalog_loader=failing_loader)
        drawer.open_for_create()
        assert drawer.state is DrawerState.OPEN
        assert drawer.catalog == []
        assert notifier.messages == [("error", "No se pudo cargar la lista de productos.")]

    def test_receipt_rendered_after_save(self, service, notifier, tmp_path):
        service.create.return_value = {"_id": "r1"}
        drawer = make_drawer(IncomeForm(), service, notifier, catalog_loader=lambda: CATALOG,
                             report_generator=ReportGenerator(), receipt_dir=tmp_path)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso"], cuenta="Nequi")
        drawer.submit(generate_receipt=True)
        assert drawer.last_receipt == tmp_path / "Factura_r1.pdf"
        assert drawer.last_receipt.exists()
        assert notifier.messages[-1] == ("success", "Factura descargada exitosamente")


class TestSavedRecordsReadBack:
    """Submit drawers against a backend that stores what it receives."""

    @pytest.fixture
    def stored(self):
        return {"/ingresos": [], "/egresos": []}

    @pytest.fixture
    def client(self, request_context, stored):
        def handler(request: httpx.Request) -> httpx.Response:
            rows = stored[request.url.path]
            if request.method == "POST":
                body = {"_id": f"r{len(rows) + 1}", **json.loads(request.content)}
                rows.append(body)
                return httpx.Response(201, json=body)
            return httpx.Response(200, json=rows)

        with ApiClient(request_context, transport=httpx.MockTransport(handler)) as api:
            yield api

    def test_expense_amount_and_account_survive(self, client, notifier):
        service = TransactionService(client, RecordKind.EXPENSE)
        drawer = make_drawer(ExpenseForm(), service, notifier)
        drawer.open_for_create()
        drawer.set_values(valor="$ 12.500", cuenta="Nequi", descripcion="Taxi")

        assert drawer.submit() is not None

        [record] = service.list_records()
        assert record.amount == 12500.0
        assert record.account == "Nequi"
        assert record.description == "Taxi"

    def test_income_amount_and_account_survive(self, client, notifier):
        service = TransactionService(client, RecordKind.INCOME)
        drawer = make_drawer(IncomeForm(), service, notifier, catalog_loader=lambda: CATALOG)
        drawer.open_for_create()
        drawer.set_values(tipo=["Curso", "Kit"], cuenta="Bancolombia")

        drawer.submit()

        [record] = service.list_records()
        assert record.amount == 50000.0
        assert record.account == "Bancolombia"
        assert record.concept == "Curso, Kit"
        assert record.has_customer is False
