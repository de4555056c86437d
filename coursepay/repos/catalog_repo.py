# coursepay/repos/catalog_repo.py
from sqlalchemy.orm import Session

from coursepay.data.models.catalog import CourseModel, BundleModel


class CatalogRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_course(self, course_id: int) -> CourseModel | None:
        return self.db.get(CourseModel, course_id)

    def get_bundle(self, bundle_id: int) -> BundleModel | None:
        return self.db.get(BundleModel, bundle_id)

    def find_item(self, item_id: int, item_type: str) -> CourseModel | BundleModel | None:
        if item_type == "bundle":
            return self.get_bundle(item_id)
        if item_type == "course":
            return self.get_course(item_id)
        return None
