# coursepay/services/notification_service.py
from coursepay.celery_worker import celery_app
from coursepay.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Purchase notifications for the student/parent.
    Dispatch goes through Celery; a broker failure is logged, never raised.
    """

    @staticmethod
    def send_purchase_invoice_notification(user_id: int, purchase_id: int) -> bool:
        try:
            send_purchase_invoice_task.delay(user_id, purchase_id)
        except Exception as e:
            logger.warning(f"Could not queue invoice notification for purchase {purchase_id}: {e}")
            return False
        return True


@celery_app.task(name="coursepay.services.notification_service.send_purchase_invoice_task")
def send_purchase_invoice_task(user_id: int, purchase_id: int):
    """
    Celery task. Push/WhatsApp delivery lives in the notification platform;
    here we only emit the event.
    """
    logger.info(f"[NOTIFICATION] User {user_id}: invoice for purchase {purchase_id}")
    return {"user_id": user_id, "purchase_id": purchase_id, "status": "sent"}
