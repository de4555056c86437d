# coursepay/services/cart_service.py
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.orm import Session

from coursepay.data.models.cart import CartModel, CartItemModel
from coursepay.domain.errors import CartError, ItemNotFoundError
from coursepay.domain.money import ZERO, discounted_price, to_money
from coursepay.repos.cart_repo import CartRepo
from coursepay.repos.catalog_repo import CatalogRepo
from coursepay.repos.user_repo import UserRepo
from coursepay.utils.logging import get_logger

logger = get_logger(__name__)

ITEM_TYPES = ("course", "bundle")


def is_purchasable(item) -> bool:
    return item is not None and bool(item.is_active) and item.status == "published"


class CartService:
    """
    Cart per user, stored server-side.
    The stored lines are only references; every read re-prices them from the
    catalog and prunes lines that are gone, unpublished or already owned.
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.catalog = CatalogRepo(db)
        self.users = UserRepo(db)

    #query (self-healing: prunes the stored cart)
    def validate_cart(self, user_id: int | None, cart: CartModel | None = None) -> Dict[str, Any]:
        """
        Use Case: revalidate the stored cart against the live catalog.

        Returns {items, subtotal, tax, total, valid_items}. Invalid lines are
        deleted from storage, so callers always see the pruned cart.
        """
        if cart is None and user_id is not None:
            cart = self.repo.get_cart_by_user(user_id)

        if cart is None:
            return {"items": [], "subtotal": ZERO, "tax": ZERO, "total": ZERO, "valid_items": []}

        lines = []
        keep_ids = set()

        stored_items = self.repo.get_cart_items(cart.id)

        for stored in stored_items:
            item = self.catalog.find_item(stored.item_id, stored.item_type)

            if not is_purchasable(item):
                logger.info(f"Dropping {stored.item_type} {stored.item_id} from cart {cart.id}: unavailable")
                continue

            if user_id is not None and self.users.owns_item(user_id, stored.item_id, stored.item_type):
                logger.info(f"Dropping {stored.item_type} {stored.item_id} from cart {cart.id}: already owned")
                continue

            keep_ids.add(stored.id)
            lines.append(
                {
                    "item_id": stored.item_id,
                    "item_type": stored.item_type,
                    "title": item.title,
                    "original_price": to_money(item.price),
                    "discount_percent": Decimal(str(item.discount_percent or 0)),
                    "final_price": discounted_price(item.price, item.discount_percent),
                    "thumbnail": item.thumbnail or "",
                    "added_at": stored.added_at,
                }
            )

        if len(keep_ids) != len(stored_items):
            self.repo.replace_items(cart, keep_ids)
            # pruned cart invalidates any advisory promo
            self.repo.set_applied_promo(cart, None)
            self.repo.commit()

        subtotal = sum((line["final_price"] for line in lines), ZERO)

        return {
            "items": lines,
            "subtotal": subtotal,
            "tax": ZERO,
            "total": subtotal,
            "valid_items": [{"id": line["item_id"], "type": line["item_type"]} for line in lines],
        }

    def get_cart(self, user_id: int) -> Dict[str, Any]:
        cart = self.repo.get_cart_by_user(user_id)
        validated = self.validate_cart(user_id, cart)
        return {
            "items": validated["items"],
            "subtotal": validated["subtotal"],
            "tax": validated["tax"],
            "total": validated["total"],
            "cart_count": len(validated["items"]),
            "applied_promo": cart.applied_promo if cart else None,
        }

    #commands
    def add_to_cart(self, user_id: int, item_id: int, item_type: str) -> Dict[str, Any]:
        if item_type not in ITEM_TYPES:
            raise CartError(f"Unknown item type: {item_type}")

        item = self.catalog.find_item(item_id, item_type)
        if not is_purchasable(item):
            raise ItemNotFoundError("Item not found")

        if item_type == "bundle" and self.users.has_purchased_bundle(user_id, item_id):
            raise CartError("You have already purchased this bundle")

        if item_type == "course" and self.users.has_access_to_course(user_id, item_id):
            raise CartError(
                "You already have access to this course through a previous purchase or bundle"
            )

        cart = self.repo.get_or_create_cart(user_id)
        stored = self.repo.get_cart_items(cart.id)

        if any(s.item_id == item_id and s.item_type == item_type for s in stored):
            raise CartError("Item already in cart")

        if item_type == "course":
            for s in stored:
                if s.item_type != "bundle":
                    continue
                bundle = self.catalog.get_bundle(s.item_id)
                if bundle and any(c.id == item_id for c in bundle.courses):
                    raise CartError(
                        f'This course is already included in the "{bundle.title}" bundle in your cart. '
                        "Please remove the bundle first if you want to purchase this course individually."
                    )
        else:
            in_cart = {s.item_id for s in stored if s.item_type == "course"}
            conflicting = [c.title for c in item.courses if c.id in in_cart]
            if conflicting:
                raise CartError(
                    "This bundle contains courses that are already in your cart: "
                    f"{', '.join(conflicting)}. Please remove those individual courses first "
                    "if you want to purchase the bundle."
                )

        self.repo.add_cart_item(
            CartItemModel(cart_id=cart.id, item_id=item_id, item_type=item_type, title=item.title)
        )
        self.repo.set_applied_promo(cart, None)
        self.repo.commit()

        logger.info(f"Added {item_type} {item_id} to cart of user {user_id}")

        return self.get_cart(user_id)

    def remove_from_cart(self, user_id: int, item_id: int, item_type: str) -> Dict[str, Any]:
        cart = self.repo.get_cart_by_user(user_id)
        if not cart or not self.repo.get_cart_items(cart.id):
            raise CartError("Cart is empty")

        self.repo.delete_cart_item(cart.id, item_id, item_type)
        self.repo.set_applied_promo(cart, None)
        self.repo.commit()

        logger.info(f"Removed {item_type} {item_id} from cart of user {user_id}")

        return self.get_cart(user_id)

    def clear_cart(self, user_id: int):
        self.repo.clear(user_id)
        self.repo.commit()

    def store_applied_promo(self, user_id: int, promo: dict | None):
        cart = self.repo.get_or_create_cart(user_id)
        self.repo.set_applied_promo(cart, promo)
        self.repo.commit()

    def discard_items(self, user_id: int, refs: list[tuple[int, str]]):
        """Drop purchased lines and the advisory promo; lines added since stay."""
        cart = self.repo.get_cart_by_user(user_id)
        if not cart:
            return
        for item_id, item_type in refs:
            self.repo.delete_cart_item(cart.id, item_id, item_type)
        self.repo.set_applied_promo(cart, None)
        self.repo.commit()
