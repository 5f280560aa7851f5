# storefront/services/storefront_client.py
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List

import requests
from requests import RequestException

from storefront.domain.errors import AuthExpiredError, NetworkError
from storefront.utils.logging import get_logger
from storefront.utils.retry import http_retry
from storefront.utils.settings import HTTP_TIMEOUT_SECONDS, STOREFRONT_API_URL

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Bearer token of the shopper, passed explicitly instead of read from cookies."""

    token: str | None = None
    session_key: str = "guest"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def owner_key(self) -> str:
        """Storage key of the shopper; the token itself is never stored."""
        if self.token:
            return "user:" + hashlib.sha256(self.token.encode("utf-8")).hexdigest()
        return f"guest:{self.session_key}"

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers


class StorefrontClient:
    """
    Blocking JSON/REST client for the store backend.

    Every non-2xx answer becomes NetworkError (401 -> AuthExpiredError),
    a body that is not JSON is read as {}.
    """

    def __init__(
        self,
        auth: AuthContext,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.auth = auth
        self.base_url = (base_url or STOREFRONT_API_URL).rstrip("/")
        self.timeout = timeout or HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    # orders

    def list_orders(self, page: int = 1) -> Dict[str, Any]:
        return self._get("/orders", params={"page": page})

    def get_order(self, code: str) -> Dict[str, Any]:
        return self._get(f"/orders/{code}")

    def cancel_order(self, order_id: int, code: str) -> Dict[str, Any]:
        return self._send("POST", "/orders/cancel", json={"id": order_id, "code": code})

    def reorder_items(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._send("POST", "/orders/reorder", json=payload)

    def reorder_order(self, order_id: int, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        return self._send("POST", f"/orders/{order_id}/reorder", json=payload)

    def assign_payment_method(self, order_id: int, method_code: str) -> Dict[str, Any]:
        return self._send(
            "PATCH", f"/orders/{order_id}/payment-method", json={"ma_phuongthuc": method_code}
        )

    def update_order_status(self, order_id: int, status: str, payment_status: str) -> Dict[str, Any]:
        return self._send(
            "PATCH",
            f"/orders/{order_id}/status",
            json={"status": status, "paymentStatus": payment_status},
        )

    def request_payment_url(self, order_id: int) -> Dict[str, Any]:
        return self._send("POST", f"/payments/retry/{order_id}")

    # cart

    def get_cart(self) -> Dict[str, Any]:
        return self._get("/cart")

    def add_cart_item(self, variant_id: int, quantity: int) -> Dict[str, Any]:
        return self._send("POST", "/cart/items", json={"id_bienthe": variant_id, "soluong": quantity})

    def update_cart_item(self, variant_id: int, quantity: int) -> Dict[str, Any]:
        return self._send("PUT", "/cart/items", json={"id_bienthe": variant_id, "soluong": quantity})

    def remove_cart_item(self, variant_id: int) -> Dict[str, Any]:
        return self._send("DELETE", f"/cart/items/{variant_id}")

    # catalog

    def list_vouchers(self) -> List[Dict[str, Any]]:
        body = self._get("/home")
        data = body.get("data") or {}
        return list(data.get("new_coupon") or []) if isinstance(data, dict) else []

    # transport

    def _get(self, path: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.info(f"StorefrontClient GET {url} {params or ''}")
        try:
            resp = self._read(url, params)
        except RequestException as e:
            raise NetworkError(f"GET {path} failed: {e}") from e
        return self._handle(resp, "GET", path)

    @http_retry()
    def _read(self, url: str, params: Dict[str, Any] | None) -> requests.Response:
        return self.session.get(url, params=params, headers=self.auth.headers(), timeout=self.timeout)

    def _send(self, method: str, path: str, json: Dict[str, Any] | None = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        logger.info(f"StorefrontClient {method} {url}")
        try:
            resp = self.session.request(
                method, url, json=json, headers=self.auth.headers(), timeout=self.timeout
            )
        except RequestException as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e
        return self._handle(resp, method, path)

    def _handle(self, resp: requests.Response, method: str, path: str) -> Dict[str, Any]:
        body = self._json(resp)

        if resp.status_code == 401:
            logger.warning(f"{method} {path}: session expired")
            raise AuthExpiredError()

        if not resp.ok:
            message = self._message(body)
            logger.error(f"{method} {path} -> HTTP {resp.status_code} {message or ''}")
            raise NetworkError(
                message or f"{method} {path} failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return body

    @staticmethod
    def _message(body: Dict[str, Any]) -> str | None:
        message = body.get("message")
        #laravel style validation errors: {"field": ["msg", ...]}
        if isinstance(message, dict):
            parts = []
            for value in message.values():
                parts.extend(value if isinstance(value, list) else [value])
            return "\n".join(str(p) for p in parts if p) or None
        return str(message) if message else None

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        try:
            payload = resp.json()
        except ValueError:
            return {}
        if isinstance(payload, dict):
            return payload
        return {"data": payload}
