# coursepay/data/models/enrollment.py
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, UniqueConstraint

from coursepay.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class EnrollmentModel(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)

    status = Column(String, nullable=False, default="active")
    progress = Column(Integer, nullable=False, default=0)
    enrolled_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="u_enrollment_user_course"),)


class PurchasedCourseModel(Base):
    __tablename__ = "purchased_courses"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)
    order_number = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    purchased_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="u_purchased_course"),)


class PurchasedBundleModel(Base):
    __tablename__ = "purchased_bundles"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id"), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)
    order_number = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    purchased_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (UniqueConstraint("user_id", "bundle_id", name="u_purchased_bundle"),)
