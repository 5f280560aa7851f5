# storefront/api/routers/orders.py
from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.api.deps import SessionRegistry, get_auth, get_registry, to_http
from storefront.domain import status as order_status
from storefront.domain.errors import StorefrontError
from storefront.domain.schemas import (
    Order,
    OrderListOut,
    OrderOut,
    PaymentIn,
    PaymentOut,
    ReorderIn,
    ReorderResult,
)
from storefront.services.order_service import OrderService
from storefront.services.pricing import PricingEngine
from storefront.services.storefront_client import AuthContext

router = APIRouter(prefix="/orders", tags=["orders"])


def get_service(auth: AuthContext, registry: SessionRegistry) -> OrderService:
    return registry.orders(auth)


def order_out(svc: OrderService, order: Order) -> OrderOut:
    status = order.canonical_status
    return OrderOut(
        order=order,
        status=status,
        status_label=status.label,
        actions=svc.available_actions(order),
    )


@router.get("", response_model=OrderListOut)
async def list_orders(
    status: str = Query(order_status.ALL),
    page: int = Query(1, ge=1),
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    """
    Whole history merged from every backend page, then filtered by
    canonical status and sliced locally.
    """
    svc = get_service(auth, registry)
    try:
        history = await svc.fetch_history()
        selected = order_status.filter_orders(history.orders, status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown order status filter: {status}")
    except StorefrontError as e:
        raise to_http(e)

    visible, total_pages = svc.paginate(selected, page)
    return OrderListOut(
        orders=[order_out(svc, o) for o in visible],
        counts=order_status.count_by_status(history.orders),
        page=min(page, total_pages),
        total_pages=total_pages,
        failed_pages=history.failed_pages,
    )


@router.get("/{code}", response_model=OrderOut)
async def get_order(
    code: str,
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    svc = get_service(auth, registry)
    try:
        return order_out(svc, await svc.get_order(code))
    except StorefrontError as e:
        raise to_http(e)


@router.get("/{code}/summary")
async def get_order_summary(
    code: str,
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    svc = get_service(auth, registry)
    try:
        order = await svc.get_order(code)
    except StorefrontError as e:
        raise to_http(e)
    pricing = PricingEngine()
    return {"summary": pricing.for_order(order), "reconciles": pricing.reconciles(order)}


@router.post("/{code}/cancel", response_model=OrderOut)
async def cancel_order(
    code: str,
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    svc = get_service(auth, registry)
    try:
        order = await svc.get_order(code)
        return order_out(svc, await svc.cancel_order(order))
    except StorefrontError as e:
        raise to_http(e)


@router.post("/{code}/reorder", response_model=ReorderResult)
async def reorder(
    code: str,
    payload: ReorderIn,
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    svc = get_service(auth, registry)
    try:
        order = await svc.get_order(code)
        result = await svc.reorder(order, payload.selection)
    except StorefrontError as e:
        raise to_http(e)
    # the backend added the lines to the cart, drop the cached copy
    await registry.drop_cart(auth)
    return result


@router.post("/{code}/payment", response_model=PaymentOut)
async def start_payment(
    code: str,
    payload: PaymentIn,
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    """Retry payment or buy again with payment, using the chosen method."""
    svc = get_service(auth, registry)
    orchestrator = registry.payment(auth)
    try:
        order = await svc.get_order(code)
        orchestrator.open(order, payload.action)
        outcome = await orchestrator.confirm(payload.method)
    except StorefrontError as e:
        orchestrator.cancel()
        raise to_http(e)

    return PaymentOut(
        state=outcome.state.value,
        order_id=outcome.order_id,
        redirect_url=outcome.redirect_url,
        message=outcome.message,
    )
