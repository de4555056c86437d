# coursepay/repos/promo_repo.py
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coursepay.data.models.promo_code import PromoCodeModel, PromoCodeUsageModel


class PromoRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, promo_id: int) -> PromoCodeModel | None:
        return self.db.get(PromoCodeModel, promo_id)

    def get_by_code(self, code: str) -> PromoCodeModel | None:
        return self.db.execute(
            select(PromoCodeModel).where(PromoCodeModel.code == code)
        ).scalar_one_or_none()

    def create(self, promo: PromoCodeModel) -> PromoCodeModel:
        self.db.add(promo)
        self.db.commit()
        self.db.refresh(promo)
        return promo

    def has_usage_for_purchase(self, promo_id: int, purchase_id: int) -> bool:
        return self.db.execute(
            select(PromoCodeUsageModel.id).where(
                PromoCodeUsageModel.promo_code_id == promo_id,
                PromoCodeUsageModel.purchase_id == purchase_id,
            )
        ).first() is not None

    def record_usage(self, usage: PromoCodeUsageModel, single_use: bool = False) -> None:
        """Append the usage row and bump current_uses in the same transaction."""
        self.db.add(usage)
        values = {"current_uses": PromoCodeModel.current_uses + 1}
        if single_use:
            values["used_by_user_id"] = usage.user_id
        self.db.execute(
            update(PromoCodeModel)
            .where(PromoCodeModel.id == usage.promo_code_id)
            .values(**values)
        )
        self.db.flush()
        promo = self.db.get(PromoCodeModel, usage.promo_code_id)
        if promo is not None:
            self.db.expire(promo, ["current_uses", "used_by_user_id", "usage_history"])
