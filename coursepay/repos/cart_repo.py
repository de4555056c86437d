# coursepay/repos/cart_repo.py
from datetime import datetime, timezone

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from coursepay.data.models.cart import CartModel, CartItemModel


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_cart_by_user(self, user_id: int) -> CartModel | None:
        return self.db.execute(
            select(CartModel).where(CartModel.user_id == user_id)
        ).scalar_one_or_none()

    def get_or_create_cart(self, user_id: int) -> CartModel:
        cart = self.get_cart_by_user(user_id)
        if cart:
            return cart
        cart = CartModel(user_id=user_id, applied_promo=None)
        self.db.add(cart)
        self.db.flush()
        return cart

    def get_cart_items(self, cart_id: int) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(CartItemModel.cart_id == cart_id)
                .order_by(CartItemModel.id)
            ).scalars().all()
        )

    def add_cart_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def delete_cart_item(self, cart_id: int, item_id: int, item_type: str) -> int:
        res = self.db.execute(
            delete(CartItemModel).where(
                CartItemModel.cart_id == cart_id,
                CartItemModel.item_id == item_id,
                CartItemModel.item_type == item_type,
            )
        )
        return res.rowcount

    def replace_items(self, cart: CartModel, keep_ids: set[int]):
        """Drop every line of the cart whose row id is not in keep_ids."""
        query = delete(CartItemModel).where(CartItemModel.cart_id == cart.id)
        if keep_ids:
            query = query.where(CartItemModel.id.not_in(keep_ids))
        self.db.execute(query)
        self.db.expire(cart, ["items"])

    def clear(self, user_id: int):
        cart = self.get_cart_by_user(user_id)
        if not cart:
            return
        self.db.execute(delete(CartItemModel).where(CartItemModel.cart_id == cart.id))
        cart.applied_promo = None
        self.touch(cart)
        self.db.expire(cart, ["items"])

    def set_applied_promo(self, cart: CartModel, promo: dict | None):
        cart.applied_promo = promo
        self.touch(cart)

    def touch(self, cart: CartModel):
        cart.updated_at = datetime.now(timezone.utc)
        self.db.add(cart)

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
