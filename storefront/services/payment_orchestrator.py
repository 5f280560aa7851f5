# storefront/services/payment_orchestrator.py
import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from storefront.domain import status as order_status
from storefront.domain.errors import (
    ActionNotAllowedError,
    AuthExpiredError,
    InconsistentOrderStateError,
    NetworkError,
    OrchestratorBusyError,
    PaymentFlowError,
    ValidationError,
)
from storefront.domain.schemas import Order, PaymentAction, PaymentMethodChoice
from storefront.services.order_service import OrderService, reorder_result
from storefront.services.reorder_builder import ReorderBuilder
from storefront.services.storefront_client import StorefrontClient
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentState(str, Enum):
    IDLE = "idle"
    METHOD_SELECTION_OPEN = "method_selection_open"
    PROCESSING = "processing"
    REDIRECTING = "redirecting"
    FINALIZED = "finalized"
    FAILED = "failed"


# (order status, payment status) written right after the method is chosen;
# the gateway callback is what later flips the payment status to paid
PENDING_STATUS_BY_METHOD = {
    PaymentMethodChoice.COD: ("Chờ xử lý", "Chưa thanh toán"),
    PaymentMethodChoice.GATEWAY_QR: ("Chờ xử lý", "Chưa thanh toán"),
    PaymentMethodChoice.MANUAL: ("Chờ xác nhận", "Chưa thanh toán"),
}


@dataclass
class PaymentOutcome:
    state: PaymentState
    order_id: int
    method: PaymentMethodChoice
    redirect_url: str | None = None
    order: Order | None = None
    message: str | None = None


class PaymentOrchestrator:
    """
    Retry payment / buy again with payment.

    open() shows the method prompt (nothing is sent yet, cancel() just closes
    it). confirm() then runs, strictly one after another:

    1. reorder only: create the new order and learn its id
    2. assign the chosen payment method
    3. write the method's pending order/payment status
    4. gateway methods: fetch the payment URL and redirect, sequence ends
    5. other methods: reload the order and finish locally

    A failing step stops the sequence. Nothing is rolled back: when the
    method was assigned but the status was not, the caller gets an
    InconsistentOrderStateError asking the shopper to check the order.
    """

    def __init__(
        self,
        client: StorefrontClient,
        orders: OrderService,
        redirect: Callable[[str], Any] | None = None,
        builder: ReorderBuilder | None = None,
    ):
        self.client = client
        self.orders = orders
        self.redirect = redirect
        self.builder = builder or ReorderBuilder()
        self.state = PaymentState.IDLE
        self.order: Order | None = None
        self.action: PaymentAction | None = None
        self._half_done = False

    def open(self, order: Order, action: PaymentAction) -> None:
        if self.state is PaymentState.PROCESSING:
            raise OrchestratorBusyError()

        if action is PaymentAction.RETRY:
            if not order_status.can_retry_payment(order.order_status, order.payment_status):
                raise ActionNotAllowedError(
                    f"Order {order.code} is not waiting for payment, retry is not available"
                )
        else:
            # fails with EmptySelectionError when only gifts are left
            self.builder.build(order)

        self.order = order
        self.action = action
        self.state = PaymentState.METHOD_SELECTION_OPEN
        logger.info(f"Payment prompt opened for {order.code} ({action.value})")

    def cancel(self) -> bool:
        if self.state is PaymentState.PROCESSING:
            logger.info("Payment is processing, cancel ignored")
            return False
        if self.state is not PaymentState.METHOD_SELECTION_OPEN:
            return False
        logger.info(f"Payment prompt for {self.order.code} closed without changes")
        self._reset()
        return True

    async def confirm(self, method: PaymentMethodChoice) -> PaymentOutcome:
        if self.state is PaymentState.PROCESSING:
            raise OrchestratorBusyError()
        if self.state is not PaymentState.METHOD_SELECTION_OPEN:
            raise ValidationError("Choose an order and open the payment prompt first")

        self.state = PaymentState.PROCESSING
        self._half_done = False
        try:
            return await self._run(self.order, method)
        except BaseException:
            # never leave the orchestrator stuck in processing
            if self.state is PaymentState.PROCESSING:
                self.state = PaymentState.FAILED
            raise

    async def _run(self, order: Order, method: PaymentMethodChoice) -> PaymentOutcome:
        # step 1
        if self.action is PaymentAction.REORDER:
            target_id = await self._reorder(order)
        else:
            target_id = order.id

        # step 2
        await self._step("assign_method", self.client.assign_payment_method, target_id, method.value)
        self._half_done = True

        # step 3
        status, payment_status = PENDING_STATUS_BY_METHOD[method]
        await self._step("set_status", self.client.update_order_status, target_id, status, payment_status)
        self._half_done = False

        # step 4
        if method.requires_gateway:
            return await self._redirect_to_gateway(target_id, method)

        # step 5
        return await self._finalize(order, target_id, method)

    async def _reorder(self, order: Order) -> int:
        request = self.builder.build(order)
        body = await self._step("reorder", self.client.reorder_order, order.id, request.to_payload())
        result = reorder_result(body)
        if not result.has_new_order:
            self.state = PaymentState.FAILED
            raise PaymentFlowError(
                "reorder",
                result.message or "The new order could not be determined, please check your cart.",
            )
        logger.info(f"Reorder of {order.code} created order #{result.new_order_id}")
        return result.new_order_id

    async def _redirect_to_gateway(self, target_id: int, method: PaymentMethodChoice) -> PaymentOutcome:
        body = await self._step("payment_url", self.client.request_payment_url, target_id)
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        url = body.get("payment_url") or data.get("payment_url")
        if not url:
            self.state = PaymentState.FAILED
            raise PaymentFlowError(
                "payment_url",
                body.get("message") or "The payment link could not be created, please retry from your orders.",
            )

        self.state = PaymentState.REDIRECTING
        logger.info(f"Redirecting order #{target_id} to payment gateway")
        if self.redirect:
            result = self.redirect(url)
            if inspect.isawaitable(result):
                await result
        return PaymentOutcome(state=self.state, order_id=target_id, method=method, redirect_url=url)

    async def _finalize(self, order: Order, target_id: int, method: PaymentMethodChoice) -> PaymentOutcome:
        code = order.code if target_id == order.id else None
        try:
            refreshed = await self.orders.refresh_order(target_id, code)
        except AuthExpiredError:
            self.state = PaymentState.FAILED
            raise
        except NetworkError as e:
            self.state = PaymentState.FAILED
            raise PaymentFlowError(
                "finalize", "Payment method saved, but the order could not be reloaded.", cause=e
            ) from e

        self.state = PaymentState.FINALIZED
        logger.info(f"Order #{target_id} set to {method.name}, finalized")
        return PaymentOutcome(
            state=self.state,
            order_id=target_id,
            method=method,
            order=refreshed,
            message=f"Order updated: {method.label}",
        )

    async def _step(self, name: str, fn: Callable, *args) -> dict:
        logger.info(f"Payment step {name} {args}")
        try:
            return await asyncio.to_thread(fn, *args)
        except NetworkError as e:
            self.state = PaymentState.FAILED
            if self._half_done:
                # an expired session here still leaves the method assigned
                logger.error(f"Payment step {name} failed after method was assigned: {e}")
                raise InconsistentOrderStateError(name, cause=e) from e
            if isinstance(e, AuthExpiredError):
                raise
            raise PaymentFlowError(name, e.message, cause=e) from e

    def _reset(self) -> None:
        self.state = PaymentState.IDLE
        self.order = None
        self.action = None
        self._half_done = False
