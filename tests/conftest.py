import json
from datetime import date

import httpx
import pytest

from api_client import ApiClient, RequestContext
from models import FilterState, RecordKind, TransactionRecord
from record_filter import month_range


def make_income(record_id, created_at, amount, account="Nequi", concept="Curso", **extra):
    payload = {
        "_id": record_id,
        "createdAt": created_at,
        "valor": amount,
        "cuenta": account,
        "producto": concept,
        "vendedor": "ana",
    }
    payload.update(extra)
    return TransactionRecord.from_api(payload, RecordKind.INCOME)


def make_expense(record_id, fecha, amount, account="Efectivo", descripcion="Papelería", **extra):
    payload = {
        "_id": record_id,
        "fecha": fecha,
        "valor": amount,
        "cuenta": account,
        "descripcion": descripcion,
    }
    payload.update(extra)
    return TransactionRecord.from_api(payload, RecordKind.EXPENSE)


@pytest.fixture
def march_incomes():
    """Two March 2024 sales on different accounts."""
    return [
        make_income("i1", "2024-03-05T10:00:00", 50000, account="Nequi",
                    nombre="Laura", apellido="Gómez", numeroDeDocumento="1020304050"),
        make_income("i2", "2024-03-20T16:30:00", 30000, account="Efectivo", concept="Certificado"),
    ]


@pytest.fixture
def sample_incomes(march_incomes):
    return march_incomes + [
        make_income("i3", "2024-04-02T09:00:00", 20000, account="Nequi", concept="Asesoría",
                    payment_reference="REF-998"),
        make_income("i4", None, 10000, account="Nequi"),
    ]


@pytest.fixture
def sample_expenses():
    return [
        make_expense("e1", "2024-03-10", 15000, account="Nequi"),
        make_expense("e2", "2024-03-25", 5000, account="Efectivo", descripcion="Transporte"),
        make_expense("e3", "2024-04-15", 8000),
    ]


@pytest.fixture
def march_state():
    return FilterState(date_range=month_range(2024, 3))


@pytest.fixture
def request_context():
    return RequestContext(
        base_url="http://api.test",
        token="secret-token",
        tenant_slug="acme",
        user_name="ana",
    )


class RecordingTransport:
    """
    MockTransport handler that records requests and replies from a routing table.

    Routes map (method, path) to (status, body); unmatched requests get 404.
    """

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.routes.get((request.method, request.url.path), (404, {"message": "Not found"}))
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, content=json.dumps(body).encode("utf-8"),
                              headers={"Content-Type": "application/json"})

    def bodies(self):
        return [json.loads(r.content) if r.content else None for r in self.requests]


@pytest.fixture
def recording_transport():
    return RecordingTransport()


@pytest.fixture
def api_client(request_context, recording_transport):
    client = ApiClient(request_context, transport=httpx.MockTransport(recording_transport))
    yield client
    client.close()


@pytest.fixture
def today():
    return date(2024, 3, 15)
