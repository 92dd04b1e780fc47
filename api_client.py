"""HTTP client for the POS REST backends.

Every call receives an explicit RequestContext (base URL, bearer token,
tenant slug) instead of reading session state from global storage.
Collection endpoints answer either with a bare JSON array or with a
``{"data": [...]}`` envelope; ``normalize_collection`` is the single
place where both shapes are accepted.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from exceptions import ApiError, SessionError
from models import CatalogItem, Certificate, Order, RecordKind, TransactionRecord

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Ocurrió un error inesperado."

INGRESOS_PATH = "/ingresos"
EGRESOS_PATH = "/egresos"
CERTIFICATES_PATH = "/api/v1/clients"
INVENTORY_PATH = "/inventario"
ORDERS_PATH = "/pedidos"


@dataclass(frozen=True)
class RequestContext:
    """
    Explicit per-session request settings.

    Attributes:
        base_url: Backend base URL
        token: Bearer token; None sends unauthenticated requests
        tenant_slug: Organization slug sent as the x-tenant header
        user_name: Current user, used as default seller
        timeout: Request timeout in seconds
    """
    base_url: str
    token: Optional[str] = None
    tenant_slug: Optional[str] = None
    user_name: str = ""
    timeout: float = 30.0

    def headers(self) -> Dict[str, str]:
        """Headers attached to every request."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.tenant_slug:
            headers["x-tenant"] = self.tenant_slug
        return headers

    def require_session(self, require_tenant: bool = False) -> None:
        """
        Fail fast when session values a view depends on are missing.

        Raises:
            SessionError: If the token (or tenant, when required) is absent
        """
        if not self.token:
            raise SessionError("No hay una sesión activa", details={"missing": "token"})
        if require_tenant and not self.tenant_slug:
            raise SessionError("No se encontró la organización de la sesión", details={"missing": "tenant"})


def normalize_collection(payload: Any) -> List[Dict[str, Any]]:
    """
    Accept a bare list or a {"data": [...]} envelope and return the list.

    Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
    logger.warning("Unexpected collection payload of type %s", type(payload).__name__)
    return []


def normalize_document(payload: Any) -> Dict[str, Any]:
    """Accept a bare object or a {"data": {...}} envelope and return the object."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            return data
        return payload
    return {}


def extract_error_message(error: Exception, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    """
    Best-effort user-facing message for a failed call.

    Uses the server-provided message when present, else the fallback.
    """
    if isinstance(error, ApiError) and error.server_message:
        return error.server_message
    return fallback


def _server_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class ApiClient:
    """
    Thin synchronous wrapper around httpx.Client.

    Usage:
        with ApiClient(context) as client:
            rows = client.get_collection("/ingresos")
    """

    def __init__(
        self,
        context: RequestContext,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the client.

        Args:
            context: Request context (base URL, auth, tenant, timeout)
            transport: Optional transport (tests pass httpx.MockTransport)
        """
        self.context = context
        self._client = httpx.Client(
            base_url=context.base_url.rstrip("/"),
            headers=context.headers(),
            timeout=httpx.Timeout(context.timeout),
            transport=transport,
        )

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Close the HTTP client and release connections."""
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Issue a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for empty bodies

        Raises:
            ApiError: On transport failure or non-2xx status
        """
        try:
            response = self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(
                f"Request failed: {method} {path}",
                details={"error": str(e)},
                original_error=e
            )

        if response.is_error:
            server_message = _server_message(response)
            logger.error(f"{method} {path} returned {response.status_code}: {server_message or response.reason_phrase}")
            raise ApiError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                server_message=server_message,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Invalid JSON from {method} {path}",
                status_code=response.status_code,
                original_error=e
            )

    def get_collection(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return normalize_collection(self.request("GET", path, params=params))


class ResourceService:
    """
    CRUD service for one REST resource (GET/POST on the collection,
    PUT/DELETE on /resource/{id}).
    """

    def __init__(self, client: ApiClient, path: str):
        self.client = client
        self.path = "/" + path.strip("/")

    def list(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        rows = self.client.get_collection(self.path, params=params)
        logger.info(f"Fetched {len(rows)} rows from {self.path}")
        return rows

    def get(self, item_id: str) -> Dict[str, Any]:
        return normalize_document(self.client.request("GET", f"{self.path}/{item_id}"))

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        created = normalize_document(self.client.request("POST", self.path, json=data))
        logger.info(f"Created resource in {self.path}")
        return created

    def update(self, item_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        updated = normalize_document(self.client.request("PUT", f"{self.path}/{item_id}", json=data))
        logger.info(f"Updated {self.path}/{item_id}")
        return updated

    def delete(self, item_id: str) -> None:
        self.client.request("DELETE", f"{self.path}/{item_id}")
        logger.info(f"Deleted {self.path}/{item_id}")


class TransactionService(ResourceService):
    """Income (/ingresos) or expense (/egresos) records."""

    def __init__(self, client: ApiClient, kind: RecordKind, tz: Optional[str] = None):
        super().__init__(client, INGRESOS_PATH if kind is RecordKind.INCOME else EGRESOS_PATH)
        self.kind = kind
        self.tz = tz

    def list_records(self, params: Optional[Dict[str, Any]] = None) -> List[TransactionRecord]:
        return [TransactionRecord.from_api(row, self.kind, tz=self.tz) for row in self.list(params)]


class InventoryService(ResourceService):
    """Product catalog with unit prices."""

    def __init__(self, client: ApiClient):
        super().__init__(client, INVENTORY_PATH)

    def list_items(self) -> List[CatalogItem]:
        return [CatalogItem.from_api(row) for row in self.list()]


class CertificateService(ResourceService):
    """Certificate clients."""

    def __init__(self, client: ApiClient):
        super().__init__(client, CERTIFICATES_PATH)

    def list_certificates(self, start: Optional[str] = None, end: Optional[str] = None) -> List[Certificate]:
        params = {}
        if start:
            params["fechaInicio"] = start
        if end:
            params["fechaFin"] = end
        return [Certificate.from_api(row) for row in self.list(params or None)]


class OrderService(ResourceService):
    """POS orders (pedidos) printed as invoices."""

    def __init__(self, client: ApiClient):
        super().__init__(client, ORDERS_PATH)

    def get_order(self, order_id: str) -> Order:
        return Order.from_api(self.get(order_id))
