# storefront/api/routers/cart.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import SessionRegistry, get_auth, get_registry, to_http
from storefront.domain.errors import StorefrontError
from storefront.domain.schemas import AddItemIn, CartOut, QuantityIn, ShippingIn, VoucherIn
from storefront.services.storefront_client import AuthContext

router = APIRouter(prefix="/cart", tags=["cart"])


def row_key(row_id: str) -> int | str:
    #backend rows are numeric, guest rows look like "local_12"
    return int(row_id) if row_id.isdigit() else row_id


async def get_session(
    auth: AuthContext = Depends(get_auth),
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        return await registry.cart(auth)
    except StorefrontError as e:
        raise to_http(e)


@router.get("", response_model=CartOut)
async def get_cart(cart=Depends(get_session)):
    return cart.to_out()


@router.post("/reload", response_model=CartOut)
async def reload_cart(cart=Depends(get_session)):
    try:
        await cart.flush()
        await cart.load()
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.post("/items", response_model=CartOut, status_code=201)
async def add_item(payload: AddItemIn, cart=Depends(get_session)):
    try:
        await cart.add_item(payload)
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.put("/items/{row_id}", response_model=CartOut)
async def set_quantity(row_id: str, payload: QuantityIn, cart=Depends(get_session)):
    try:
        accepted = cart.set_quantity(row_key(row_id), payload.quantity)
    except StorefrontError as e:
        raise to_http(e)
    if not accepted:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    return cart.to_out()


@router.post("/items/{row_id}/increment", response_model=CartOut)
async def increment(row_id: str, cart=Depends(get_session)):
    try:
        cart.increment(row_key(row_id))
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.post("/items/{row_id}/decrement", response_model=CartOut)
async def decrement(row_id: str, cart=Depends(get_session)):
    """Decrementing below 1 is ignored, removing a line is a DELETE."""
    try:
        cart.decrement(row_key(row_id))
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.delete("/items/{row_id}", response_model=CartOut)
async def remove_item(row_id: str, cart=Depends(get_session)):
    try:
        await cart.remove_item(row_key(row_id))
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.post("/flush", response_model=CartOut)
async def flush(cart=Depends(get_session)):
    await cart.flush()
    return cart.to_out()


@router.get("/vouchers")
async def list_vouchers(cart=Depends(get_session)):
    try:
        available = await cart.available_vouchers(refresh=True)
        eligible = await cart.eligible_vouchers()
    except StorefrontError as e:
        raise to_http(e)
    return {"available": available, "eligible": [v.code for v in eligible]}


@router.post("/voucher", response_model=CartOut)
async def apply_voucher(payload: VoucherIn, cart=Depends(get_session)):
    try:
        await cart.apply_voucher(payload.code)
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.post("/voucher/{voucher_id}", response_model=CartOut)
async def apply_voucher_by_id(voucher_id: int, cart=Depends(get_session)):
    try:
        await cart.apply_voucher_id(voucher_id)
    except StorefrontError as e:
        raise to_http(e)
    return cart.to_out()


@router.delete("/voucher", response_model=CartOut)
async def remove_voucher(cart=Depends(get_session)):
    await cart.remove_voucher()
    return cart.to_out()


@router.put("/shipping", response_model=CartOut)
async def set_shipping(payload: ShippingIn, cart=Depends(get_session)):
    cart.set_shipping_fee(payload.fee)
    return cart.to_out()
