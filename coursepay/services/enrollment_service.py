# coursepay/services/enrollment_service.py
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from coursepay.data.models.purchase import PurchaseModel
from coursepay.repos.catalog_repo import CatalogRepo
from coursepay.repos.user_repo import UserRepo
from coursepay.services.promo_service import PromoCodeService
from coursepay.utils.logging import get_logger

logger = get_logger(__name__)


class EnrollmentReconciler:
    """
    Grants access for a paid purchase. Safe to run more than once for the
    same purchase: every write is preceded by an existence check on ids.
    """

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepo(db)
        self.catalog = CatalogRepo(db)
        self.promos = PromoCodeService(db)

    def reconcile(self, purchase: PurchaseModel) -> None:
        user_id = purchase.user_id

        for item in purchase.items:
            if item.item_type == "bundle":
                self._grant_bundle(user_id, item.item_id, item.price, purchase.order_number)
            else:
                self._grant_course(user_id, item.item_id, item.price, purchase.order_number)

        if purchase.applied_promo_code_id and purchase.discount_amount and purchase.discount_amount > 0:
            self.promos.record_usage(
                promo_id=purchase.applied_promo_code_id,
                user_id=user_id,
                purchase_id=purchase.id,
                discount_amount=purchase.discount_amount,
                original_amount=purchase.original_amount,
                final_amount=purchase.total,
            )

        purchase.reconciled_at = datetime.now(timezone.utc)
        self.db.add(purchase)
        self.db.commit()

        logger.info(f"Reconciled purchase {purchase.order_number} for user {user_id}")

    def _grant_bundle(self, user_id: int, bundle_id: int, price, order_number: str):
        if not self.users.has_purchased_bundle(user_id, bundle_id):
            self.users.add_purchased_bundle(user_id, bundle_id, price, order_number)

        bundle = self.catalog.get_bundle(bundle_id)
        if not bundle:
            logger.warning(f"Bundle {bundle_id} from order {order_number} no longer exists")
            return

        for course in bundle.courses:
            if not self.users.is_enrolled(user_id, course.id):
                self.users.add_enrollment(user_id, course.id)
                logger.info(f"Enrolled user {user_id} in course {course.id} via bundle {bundle_id}")

    def _grant_course(self, user_id: int, course_id: int, price, order_number: str):
        if not self.users.has_purchased_course(user_id, course_id):
            self.users.add_purchased_course(user_id, course_id, price, order_number)

        if not self.users.is_enrolled(user_id, course_id):
            self.users.add_enrollment(user_id, course_id)
            logger.info(f"Enrolled user {user_id} in course {course_id}")
