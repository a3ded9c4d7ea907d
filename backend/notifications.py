"""In-app notifications for salesmen and account holders.

Records are append-only. Emission is best-effort: a storage failure is
logged and reported as ``None`` so the caller's state change stands.
"""

from datetime import datetime
from typing import Dict, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

NOTIFICATION_TYPES = {"info", "success", "warning", "error"}

ORDER_STATUS_MESSAGES: Dict[str, Dict[str, str]] = {
    "confirmed": {
        "title": "Order Confirmed",
        "message": "Your order {code}{customer} has been confirmed and is being processed.",
        "type": "success",
    },
    "order_view_and_accepted": {
        "title": "Order Accepted",
        "message": "Order {code}{customer} has been reviewed and accepted by the production team.",
        "type": "success",
    },
    "cad_completed": {
        "title": "CAD Design Completed",
        "message": "CAD design for order {code}{customer} has been completed and approved.",
        "type": "success",
    },
    "production_floor": {
        "title": "Production Started",
        "message": "Order {code}{customer} is now on the production floor.",
        "type": "info",
    },
    "finished": {
        "title": "Production Completed",
        "message": "Order {code}{customer} has been completed and is ready for dispatch.",
        "type": "success",
    },
    "dispatched": {
        "title": "Order Dispatched",
        "message": "Order {code}{customer} has been dispatched and is on its way.",
        "type": "success",
    },
    "cancelled": {
        "title": "Order Cancelled",
        "message": "Order {code}{customer} has been cancelled.{reason}",
        "type": "error",
    },
}

REQUEST_DECISION_MESSAGES: Dict[str, Dict[str, str]] = {
    "approved": {
        "title": "Account Approved",
        "message": "Your registration has been approved. You can now sign in.",
        "type": "success",
    },
    "rejected": {
        "title": "Account Rejected",
        "message": "Your registration request was rejected. Please contact support for details.",
        "type": "error",
    },
}


class NotificationEmitter:
    def __init__(self, collection, logger):
        self.collection = collection
        self.logger = logger

    def emit(
        self,
        user_id,
        title: str,
        message: str,
        notification_type: str = "info",
        user_type: str = "salesman",
        order_id=None,
        order_code: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ):
        if notification_type not in NOTIFICATION_TYPES:
            notification_type = "info"
        document = {
            "user_id": user_id,
            "user_type": user_type,
            "title": title,
            "message": message,
            "type": notification_type,
            "is_read": False,
            "order_id": order_id,
            "order_code": order_code,
            "metadata": dict(metadata or {}),
            "created_at": datetime.utcnow(),
        }
        try:
            result = self.collection.insert_one(document)
        except PyMongoError as exc:
            self.logger.warning(
                "Unable to record notification for %s: %s", user_id, exc
            )
            return None
        return result.inserted_id

    def order_status_changed(
        self,
        order_document,
        old_status: str,
        new_status: str,
        cancel_reason: Optional[str] = None,
    ):
        template = ORDER_STATUS_MESSAGES.get(new_status)
        salesman_id = order_document.get("salesman_id")
        if not template or not salesman_id:
            return None

        customer_name = (order_document.get("customer_name") or "").strip()
        message = template["message"].format(
            code=order_document.get("order_code", ""),
            customer=f" for {customer_name}" if customer_name else "",
            reason=f" Reason: {cancel_reason}"
            if cancel_reason
            else " Please contact support for more details.",
        )
        metadata = {"old_status": old_status, "new_status": new_status}
        if customer_name:
            metadata["customer_name"] = customer_name
        if cancel_reason:
            metadata["cancel_reason"] = cancel_reason

        return self.emit(
            salesman_id,
            template["title"],
            message,
            template["type"],
            order_id=order_document.get("_id"),
            order_code=order_document.get("order_code"),
            metadata=metadata,
        )

    def request_decided(self, account_document, request_status: str):
        template = REQUEST_DECISION_MESSAGES.get(request_status)
        if not template or not account_document:
            return None
        return self.emit(
            account_document["_id"],
            template["title"],
            template["message"],
            template["type"],
            user_type=account_document.get("role") or "salesman",
            metadata={"request_status": request_status},
        )


def serialize_notification(document) -> Dict[str, object]:
    if not document:
        return {}
    created_at = document.get("created_at")
    order_id = document.get("order_id")
    return {
        "id": str(document.get("_id")),
        "title": document.get("title", ""),
        "message": document.get("message", ""),
        "type": document.get("type", "info"),
        "isRead": bool(document.get("is_read")),
        "orderId": str(order_id) if isinstance(order_id, ObjectId) else None,
        "orderCode": document.get("order_code"),
        "metadata": document.get("metadata") or {},
        "createdAt": f"{created_at.isoformat()}Z"
        if isinstance(created_at, datetime)
        else None,
    }
