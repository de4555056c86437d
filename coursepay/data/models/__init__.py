#import all models so SQLAlchemy registers them in Base.metadata

from coursepay.data.models.user import UserModel
from coursepay.data.models.catalog import CourseModel, BundleModel, bundle_courses
from coursepay.data.models.enrollment import (
    EnrollmentModel,
    PurchasedCourseModel,
    PurchasedBundleModel,
)
from coursepay.data.models.cart import CartModel, CartItemModel
from coursepay.data.models.promo_code import PromoCodeModel, PromoCodeUsageModel
from coursepay.data.models.purchase import PurchaseModel, PurchaseItemModel

__all__ = [
    "UserModel",
    "CourseModel",
    "BundleModel",
    "bundle_courses",
    "EnrollmentModel",
    "PurchasedCourseModel",
    "PurchasedBundleModel",
    "CartModel",
    "CartItemModel",
    "PromoCodeModel",
    "PromoCodeUsageModel",
    "PurchaseModel",
    "PurchaseItemModel",
]
