# coursepay/repos/user_repo.py
from sqlalchemy import select
from sqlalchemy.orm import Session

from coursepay.data.models.user import UserModel
from coursepay.data.models.enrollment import (
    EnrollmentModel,
    PurchasedCourseModel,
    PurchasedBundleModel,
)


class UserRepo:
    """Users plus the ownership/entitlement records hanging off them."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> UserModel | None:
        return self.db.get(UserModel, user_id)

    # predicates
    def is_enrolled(self, user_id: int, course_id: int) -> bool:
        return self.db.execute(
            select(EnrollmentModel.id).where(
                EnrollmentModel.user_id == user_id,
                EnrollmentModel.course_id == course_id,
            )
        ).first() is not None

    def has_purchased_course(self, user_id: int, course_id: int) -> bool:
        return self.db.execute(
            select(PurchasedCourseModel.id).where(
                PurchasedCourseModel.user_id == user_id,
                PurchasedCourseModel.course_id == course_id,
                PurchasedCourseModel.status == "active",
            )
        ).first() is not None

    def has_purchased_bundle(self, user_id: int, bundle_id: int) -> bool:
        return self.db.execute(
            select(PurchasedBundleModel.id).where(
                PurchasedBundleModel.user_id == user_id,
                PurchasedBundleModel.bundle_id == bundle_id,
                PurchasedBundleModel.status == "active",
            )
        ).first() is not None

    def has_access_to_course(self, user_id: int, course_id: int) -> bool:
        #bundle purchases show up as enrollments
        return self.has_purchased_course(user_id, course_id) or self.is_enrolled(user_id, course_id)

    def owns_item(self, user_id: int, item_id: int, item_type: str) -> bool:
        if item_type == "bundle":
            return self.has_purchased_bundle(user_id, item_id)
        return self.has_access_to_course(user_id, item_id)

    # writes, caller commits
    def add_enrollment(self, user_id: int, course_id: int) -> EnrollmentModel:
        enrollment = EnrollmentModel(user_id=user_id, course_id=course_id, status="active", progress=0)
        self.db.add(enrollment)
        self.db.flush()
        return enrollment

    def add_purchased_course(self, user_id: int, course_id: int, price, order_number: str) -> PurchasedCourseModel:
        record = PurchasedCourseModel(
            user_id=user_id,
            course_id=course_id,
            price=price,
            order_number=order_number,
            status="active",
        )
        self.db.add(record)
        self.db.flush()
        return record

    def add_purchased_bundle(self, user_id: int, bundle_id: int, price, order_number: str) -> PurchasedBundleModel:
        record = PurchasedBundleModel(
            user_id=user_id,
            bundle_id=bundle_id,
            price=price,
            order_number=order_number,
            status="active",
        )
        self.db.add(record)
        self.db.flush()
        return record

    def list_enrollments(self, user_id: int) -> list[EnrollmentModel]:
        return list(
            self.db.execute(
                select(EnrollmentModel).where(EnrollmentModel.user_id == user_id)
            ).scalars().all()
        )

    def commit(self):
        self.db.commit()
