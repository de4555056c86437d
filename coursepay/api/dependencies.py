# coursepay/api/dependencies.py
from fastapi import Depends
from sqlalchemy.orm import Session

from coursepay.data.database import get_db
from coursepay.services.cart_service import CartService
from coursepay.services.lock_service import LockService
from coursepay.services.notification_service import NotificationService
from coursepay.services.paymob_client import PaymobClient
from coursepay.services.promo_service import PromoCodeService
from coursepay.services.purchase_service import PurchaseService


def get_gateway() -> PaymobClient:
    return PaymobClient()


def get_lock_service() -> LockService:
    return LockService()


def get_notifier() -> NotificationService:
    return NotificationService()


def get_cart_service(db: Session = Depends(get_db)) -> CartService:
    return CartService(db)


def get_promo_service(db: Session = Depends(get_db)) -> PromoCodeService:
    return PromoCodeService(db)


def get_purchase_service(
    db: Session = Depends(get_db),
    gateway: PaymobClient = Depends(get_gateway),
    notifier: NotificationService = Depends(get_notifier),
) -> PurchaseService:
    return PurchaseService(db, gateway=gateway, notifier=notifier)
