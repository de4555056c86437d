# coursepay/repos/purchase_repo.py
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from coursepay.data.models.purchase import PurchaseModel, PENDING


class PurchaseRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_purchase(self, purchase: PurchaseModel) -> PurchaseModel:
        self.db.add(purchase)
        self.db.commit()
        self.db.refresh(purchase)
        return purchase

    def get_by_merchant_order_id(self, merchant_order_id: str) -> PurchaseModel | None:
        return self.db.execute(
            select(PurchaseModel).where(PurchaseModel.payment_intent_id == merchant_order_id)
        ).scalar_one_or_none()

    def transition_from_pending(self, purchase_id: int, new_data: dict) -> int:
        """
        Compare-and-swap on status.
        UPDATE purchases SET ... WHERE id = :id AND status = 'pending'
        Returns rowcount: 1 for the winner, 0 if someone already resolved it.
        """
        res = self.db.execute(
            update(PurchaseModel)
            .where(PurchaseModel.id == purchase_id, PurchaseModel.status == PENDING)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def claim_notification(self, purchase_id: int) -> int:
        res = self.db.execute(
            update(PurchaseModel)
            .where(PurchaseModel.id == purchase_id, PurchaseModel.notification_sent.is_(False))
            .values(notification_sent=True)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def update_fields(self, purchase_id: int, new_data: dict) -> int:
        res = self.db.execute(
            update(PurchaseModel)
            .where(PurchaseModel.id == purchase_id)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    def find_pending_between(self, oldest: datetime, newest: datetime, limit: int) -> list[PurchaseModel]:
        return list(
            self.db.execute(
                select(PurchaseModel)
                .where(
                    PurchaseModel.status == PENDING,
                    PurchaseModel.payment_intent_id.is_not(None),
                    PurchaseModel.payment_intent_id != "",
                    PurchaseModel.created_at >= oldest,
                    PurchaseModel.created_at <= newest,
                )
                .order_by(PurchaseModel.created_at.asc())
                .limit(limit)
            ).scalars().all()
        )

    def list_for_user(self, user_id: int, offset: int, limit: int) -> list[PurchaseModel]:
        return list(
            self.db.execute(
                select(PurchaseModel)
                .where(PurchaseModel.user_id == user_id)
                .order_by(PurchaseModel.created_at.desc(), PurchaseModel.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
        )

    def count_for_user(self, user_id: int) -> int:
        return self.db.execute(
            select(func.count(PurchaseModel.id)).where(PurchaseModel.user_id == user_id)
        ).scalar_one()

    def refresh(self, purchase: PurchaseModel) -> PurchaseModel:
        self.db.refresh(purchase)
        return purchase

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
