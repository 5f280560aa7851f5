# storefront/services/order_service.py
import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

from pydantic import ValidationError as SchemaError

from storefront.domain import status as order_status
from storefront.domain.errors import (
    ActionNotAllowedError,
    AuthExpiredError,
    NetworkError,
    PartialAggregationError,
)
from storefront.domain.schemas import Order, ReorderResult
from storefront.services.reorder_builder import ReorderBuilder
from storefront.services.storefront_client import StorefrontClient
from storefront.utils.logging import get_logger
from storefront.utils.settings import ORDER_PAGE_SIZE

logger = get_logger(__name__)

CANCELLED_STATUS = "Đã hủy"


@dataclass
class OrderHistory:
    orders: List[Order]
    last_page: int = 1
    errors: List[PartialAggregationError] = field(default_factory=list)

    @property
    def failed_pages(self) -> List[int]:
        return [e.page for e in self.errors]


def reorder_result(body: Dict[str, Any]) -> ReorderResult:
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    new_id = data.get("id") or data.get("id_donhang") or body.get("id")
    message = body.get("message") if isinstance(body.get("message"), str) else None
    try:
        new_id = int(new_id) if new_id is not None else None
    except (TypeError, ValueError):
        new_id = None
    return ReorderResult(new_order_id=new_id, message=message)


class OrderService:
    """
    Order history, detail and the post-purchase actions (cancel, buy again).

    The blocking client runs in worker threads so several pages can be in
    flight at once while the event loop stays free.
    """

    def __init__(self, client: StorefrontClient, builder: ReorderBuilder | None = None):
        self.client = client
        self.builder = builder or ReorderBuilder()

    # queries

    async def fetch_history(self) -> OrderHistory:
        """
        Page 1 first (it tells how many pages exist), then every other page
        in parallel. A failed page is logged and skipped; the merged list is
        sorted by id descending whatever order the pages arrive in.
        """
        first = await asyncio.to_thread(self.client.list_orders, 1)
        orders, last_page = self._parse_page(first)

        pages = list(range(2, last_page + 1))
        results = await asyncio.gather(
            *(asyncio.to_thread(self.client.list_orders, p) for p in pages),
            return_exceptions=True,
        )

        errors: List[PartialAggregationError] = []
        for page, result in zip(pages, results):
            if isinstance(result, AuthExpiredError):
                raise result
            if isinstance(result, Exception):
                error = PartialAggregationError(page, result)
                logger.warning(str(error))
                errors.append(error)
                continue
            page_orders, _ = self._parse_page(result)
            orders.extend(page_orders)

        unique = {o.id: o for o in orders}
        merged = sorted(unique.values(), key=lambda o: o.id, reverse=True)
        logger.info(f"Order history: {len(merged)} orders from {last_page} page(s), {len(errors)} failed")
        return OrderHistory(orders=merged, last_page=last_page, errors=errors)

    async def get_order(self, code: str) -> Order:
        body = await asyncio.to_thread(self.client.get_order, code)
        try:
            return Order.model_validate(body.get("data") or body)
        except SchemaError as e:
            logger.warning(f"Malformed order body for {code}: {e}")
            raise NetworkError(f"Order {code} could not be read") from e

    async def refresh_order(self, order_id: int, code: str | None = None) -> Order | None:
        if code:
            return await self.get_order(code)
        history = await self.fetch_history()
        return next((o for o in history.orders if o.id == order_id), None)

    def available_actions(self, order: Order) -> List[str]:
        status = order.canonical_status
        actions = []
        if order_status.can_cancel(status):
            actions.append("cancel")
        if order_status.can_retry_payment(order.order_status, order.payment_status):
            actions.append("retry_payment")
        if order_status.can_review(status):
            actions.append("review")
        if order_status.can_reorder(order):
            actions.append("reorder")
        return actions

    @staticmethod
    def paginate(orders: List[Order], page: int, page_size: int = ORDER_PAGE_SIZE) -> Tuple[List[Order], int]:
        total_pages = max(1, math.ceil(len(orders) / page_size))
        page = min(max(page, 1), total_pages)
        start = (page - 1) * page_size
        return orders[start:start + page_size], total_pages

    # commands

    async def cancel_order(self, order: Order) -> Order:
        if not order_status.can_cancel(order.canonical_status):
            raise ActionNotAllowedError(
                f"Order {order.code} is {order.canonical_status.value} and cannot be cancelled"
            )

        logger.info(f"Cancelling order {order.code}")
        await asyncio.to_thread(self.client.cancel_order, order.id, order.code)
        return order.model_copy(update={"order_status": CANCELLED_STATUS})

    async def reorder(self, order: Order, selection: Mapping[int, int] | None = None) -> ReorderResult:
        # validation happens before anything is sent
        request = self.builder.build(order, selection)
        body = await asyncio.to_thread(self.client.reorder_items, request.to_payload())
        result = reorder_result(body)
        if not result.has_new_order:
            logger.info(f"Reorder from {order.code} accepted without a new order id, items are in the cart")
        return result

    # parsing

    def _parse_page(self, body: Dict[str, Any]) -> Tuple[List[Order], int]:
        data = body.get("data")
        last_page = 1

        if isinstance(data, dict):
            raw = data.get("data") or []
            last_page = int(data.get("last_page") or 1)
        elif isinstance(data, list):
            raw = data
        else:
            raw = []

        # grouped by status: [{"trangthai": ..., "donhang": [...]}, ...]
        if raw and all(isinstance(r, dict) and "donhang" in r for r in raw):
            raw = [o for group in raw for o in (group.get("donhang") or [])]

        orders = []
        for item in raw:
            try:
                orders.append(Order.model_validate(item))
            except SchemaError as e:
                logger.warning(f"Skipping malformed order {item.get('id') if isinstance(item, dict) else item}: {e}")
        return orders, max(last_page, 1)
