# coursepay/data/models/catalog.py
from sqlalchemy import Column, Integer, String, Boolean, Numeric, ForeignKey, Table
from sqlalchemy.orm import relationship

from coursepay.data.database import Base

bundle_courses = Table(
    "bundle_courses",
    Base.metadata,
    Column("bundle_id", Integer, ForeignKey("bundles.id", ondelete="CASCADE"), primary_key=True),
    Column("course_id", Integer, ForeignKey("courses.id", ondelete="CASCADE"), primary_key=True),
)


class CourseModel(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    # percent, 0-100
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)

    status = Column(String, nullable=False, default="draft")  # draft, published, archived
    is_active = Column(Boolean, nullable=False, default=True)
    thumbnail = Column(String, nullable=False, default="")

    bundles = relationship("BundleModel", secondary=bundle_courses, back_populates="courses")


class BundleModel(Base):
    __tablename__ = "bundles"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)

    status = Column(String, nullable=False, default="draft")
    is_active = Column(Boolean, nullable=False, default=True)
    thumbnail = Column(String, nullable=False, default="")

    courses = relationship("CourseModel", secondary=bundle_courses, back_populates="bundles")
