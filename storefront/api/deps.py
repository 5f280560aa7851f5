# storefront/api/deps.py
import asyncio
import secrets
import time
from typing import Callable, Dict

from fastapi import Header, HTTPException, Request, Response

from storefront.domain.errors import (
    AuthExpiredError,
    InconsistentOrderStateError,
    NetworkError,
    OrchestratorBusyError,
    PaymentFlowError,
    StorefrontError,
    ValidationError,
)
from storefront.repos.cart_repo import CartRepo
from storefront.services.cart_service import CartSession
from storefront.services.order_service import OrderService
from storefront.services.payment_orchestrator import PaymentOrchestrator, PaymentState
from storefront.services.storefront_client import AuthContext, StorefrontClient
from storefront.utils.logging import get_logger
from storefront.utils.settings import SESSION_IDLE_SECONDS

logger = get_logger(__name__)

ClientFactory = Callable[[AuthContext], StorefrontClient]

SESSION_KEY_HEADER = "X-Session-Key"


class SessionRegistry:
    """
    Long lived per-shopper objects: the cart (its debounce timers outlive a
    single request) and the payment orchestrator (a second confirm while the
    first one runs must see it busy).

    Entries unused for idle_seconds are flushed and dropped on the next
    lookup; a dropped cart is rebuilt from the backend or the local store.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        session_factory: Callable,
        idle_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client_factory = client_factory
        self.session_factory = session_factory
        self.idle_seconds = SESSION_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self.clock = clock
        self.carts: Dict[str, CartSession] = {}
        self.payments: Dict[str, PaymentOrchestrator] = {}
        self._last_used: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @staticmethod
    def key(auth: AuthContext) -> str:
        return auth.owner_key

    async def cart(self, auth: AuthContext) -> CartSession:
        key = self.key(auth)
        await self.evict_idle(keep=key)
        self._touch(key)

        cart = self.carts.get(key)
        if cart is not None:
            return cart

        # only loads of the same shopper wait on each other
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cart = self.carts.get(key)
            if cart is None:
                repo = CartRepo(self.session_factory())
                cart = CartSession(self.client_factory(auth), repo)
                try:
                    await cart.load()
                except StorefrontError:
                    cart.close()
                    repo.db.close()
                    raise
                self.carts[key] = cart
        return cart

    async def drop_cart(self, auth: AuthContext) -> None:
        await self._drop_cart(self.key(auth))

    def orders(self, auth: AuthContext) -> OrderService:
        return OrderService(self.client_factory(auth))

    def payment(self, auth: AuthContext) -> PaymentOrchestrator:
        key = self.key(auth)
        self._touch(key)
        orchestrator = self.payments.get(key)
        if orchestrator is None:
            client = self.client_factory(auth)
            orchestrator = PaymentOrchestrator(client, OrderService(client))
            self.payments[key] = orchestrator
        return orchestrator

    async def evict_idle(self, keep: str | None = None) -> None:
        now = self.clock()
        idle = [
            key for key, used in self._last_used.items()
            if key != keep and now - used > self.idle_seconds
        ]
        for key in idle:
            orchestrator = self.payments.get(key)
            if orchestrator and orchestrator.state is PaymentState.PROCESSING:
                continue
            await self._drop_cart(key)
            self._drop_payment(key)
            self._last_used.pop(key, None)
            logger.info(f"Session {key[:12]} evicted after {self.idle_seconds:.0f}s idle")

    async def close(self) -> None:
        for key in list(self.carts):
            await self._drop_cart(key)
        self.payments.clear()
        self._last_used.clear()
        logger.info("Session registry closed")

    def _touch(self, key: str) -> None:
        self._last_used[key] = self.clock()

    async def _drop_cart(self, key: str) -> None:
        cart = self.carts.pop(key, None)
        self._locks.pop(key, None)
        if cart:
            await cart.flush()
            cart.close()
            cart.repo.db.close()

    def _drop_payment(self, key: str) -> None:
        orchestrator = self.payments.get(key)
        if orchestrator and orchestrator.state is not PaymentState.PROCESSING:
            del self.payments[key]


def get_auth(
    response: Response,
    authorization: str | None = Header(None),
    x_session_key: str | None = Header(None),
) -> AuthContext:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip() or None
    if not token and not x_session_key:
        # a guest without a key gets its own; the caller sends it back from now on
        x_session_key = secrets.token_urlsafe(16)
        response.headers[SESSION_KEY_HEADER] = x_session_key
    return AuthContext(token=token, session_key=x_session_key or "guest")


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def to_http(e: StorefrontError) -> HTTPException:
    """Maps the storefront error taxonomy onto status codes."""
    if isinstance(e, AuthExpiredError):
        return HTTPException(status_code=401, detail=e.user_message)
    if isinstance(e, InconsistentOrderStateError):
        return HTTPException(status_code=409, detail=e.user_message)
    if isinstance(e, OrchestratorBusyError):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, NetworkError) and e.status_code == 404:
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, (NetworkError, PaymentFlowError)):
        return HTTPException(status_code=502, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)
