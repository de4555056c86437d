# coursepay/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException, Query

from coursepay.api.dependencies import get_cart_service, get_promo_service
from coursepay.domain.errors import CartError, ItemNotFoundError
from coursepay.domain.schemas import CartItemIn, CartOut, PromoApplyIn
from coursepay.services.cart_service import CartService
from coursepay.services.promo_service import PromoCodeService, applied_promo_snapshot

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartOut)
def get_cart(
    user_id: int = Query(...),
    svc: CartService = Depends(get_cart_service),
):
    """Validated cart; invalid or already owned lines are pruned on read."""
    return svc.get_cart(user_id)


@router.post("/items", response_model=CartOut)
def add_item(
    payload: CartItemIn,
    user_id: int = Query(...),
    svc: CartService = Depends(get_cart_service),
):
    try:
        return svc.add_to_cart(user_id, payload.item_id, payload.item_type)
    except ItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CartError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/items/{item_type}/{item_id}", response_model=CartOut)
def remove_item(
    item_type: str,
    item_id: int,
    user_id: int = Query(...),
    svc: CartService = Depends(get_cart_service),
):
    try:
        return svc.remove_from_cart(user_id, item_id, item_type)
    except CartError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/promo", response_model=CartOut)
def apply_promo(
    payload: PromoApplyIn,
    user_id: int = Query(...),
    svc: CartService = Depends(get_cart_service),
    promos: PromoCodeService = Depends(get_promo_service),
):
    """
    Validates the code against the current cart and remembers it on the cart.
    The stored amounts are advisory, checkout recomputes them.
    """
    cart = svc.validate_cart(user_id)
    if not cart["items"]:
        raise HTTPException(status_code=400, detail="Cart is empty")

    user = svc.users.get_user(user_id)
    result = promos.validate(
        payload.code,
        user_id,
        cart["items"],
        cart["subtotal"],
        user.email if user else None,
    )
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])

    svc.store_applied_promo(user_id, applied_promo_snapshot(result, cart["subtotal"]))
    return svc.get_cart(user_id)


@router.delete("/promo", response_model=CartOut)
def remove_promo(
    user_id: int = Query(...),
    svc: CartService = Depends(get_cart_service),
):
    svc.store_applied_promo(user_id, None)
    return svc.get_cart(user_id)
