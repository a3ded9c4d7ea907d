"""Approval and production-status state machines.

Three transition families live here:

* account requests (``pending`` -> ``approved`` | ``rejected``) for salesman
  and shop accounts,
* shop verification, which moves a shop's ``is_verified`` flag together with
  its owner's request status,
* order production status, which only moves one step forward along
  ``ORDER_PIPELINE`` or to ``cancelled``.

Every write is a compare-and-swap on the state it was computed from, so two
reviewers racing on the same record produce one effective change and one
notification. The shop/owner pair is written under an intent record that
claims the shop first. A pair interrupted between the two writes is finished
by ``replay_pending_intents``, or by the next decision on that shop once the
claim is older than ``STALE_INTENT_AFTER``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from api_errors import (
    IllegalTransition,
    InvalidAction,
    InvalidInput,
    InvalidStatus,
    NotFound,
)

ORDER_PIPELINE = (
    "confirmed",
    "order_view_and_accepted",
    "cad_completed",
    "production_floor",
    "finished",
    "dispatched",
)
ORDER_CANCELLED = "cancelled"
ORDER_STATUSES = frozenset(ORDER_PIPELINE + (ORDER_CANCELLED,))
TERMINAL_ORDER_STATUSES = frozenset({"dispatched", ORDER_CANCELLED})
INITIAL_ORDER_STATUS = ORDER_PIPELINE[0]

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"
REQUEST_STATUSES = frozenset({REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED})
REQUEST_DECISIONS = frozenset({REQUEST_APPROVED, REQUEST_REJECTED})

SHOP_ACTIONS = {"approve": REQUEST_APPROVED, "reject": REQUEST_REJECTED}
APPROVABLE_ROLES = frozenset({"shop", "salesman"})

STALE_INTENT_AFTER = timedelta(minutes=5)
INTENT_PENDING = "pending"
INTENT_COMMITTED = "committed"
INTENT_ABANDONED = "abandoned"
SHOP_VERIFICATION_INTENT = "shop_verification"


def to_object_id(value, label: str = "identifier") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise InvalidInput(f"Invalid {label}.")


def next_order_status(current: str) -> Optional[str]:
    if current not in ORDER_PIPELINE:
        return None
    index = ORDER_PIPELINE.index(current)
    if index + 1 >= len(ORDER_PIPELINE):
        return None
    return ORDER_PIPELINE[index + 1]


def ensure_order_transition(current: str, target: str) -> None:
    if target not in ORDER_STATUSES:
        raise InvalidStatus(f"Unknown order status '{target}'.")
    if current in TERMINAL_ORDER_STATUSES:
        raise IllegalTransition(
            f"Order is already {current} and can no longer change.",
            current_status=current,
        )
    if target == ORDER_CANCELLED:
        return
    expected = next_order_status(current)
    if target != expected:
        raise IllegalTransition(
            f"Order cannot move from {current} to {target}.",
            current_status=current,
            allowed=[status for status in (expected, ORDER_CANCELLED) if status],
        )


def normalize_choice(value) -> str:
    return str(value or "").strip().lower()


@dataclass
class TransitionResult:
    document: Dict
    changed: bool
    notification_id: Optional[ObjectId] = None


@dataclass
class ShopDecision:
    shop: Dict
    owner: Dict
    changed: bool
    notification_id: Optional[ObjectId] = None


class ApprovalWorkflow:
    def __init__(
        self,
        db,
        notifier,
        audit,
        logger,
        on_request_decided: Optional[Callable[[Dict, str], None]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        stale_intent_after: timedelta = STALE_INTENT_AFTER,
    ):
        self.users = db.users
        self.shops = db.shops
        self.orders = db.orders
        self.intents = db.workflow_intents
        self.notifier = notifier
        self.audit = audit
        self.logger = logger
        self.on_request_decided = on_request_decided
        self.clock = clock
        self.stale_intent_after = stale_intent_after

    # --- Account requests ---

    def review_account(self, account_id, status, reviewer_id=None) -> TransitionResult:
        status = normalize_choice(status)
        if status not in REQUEST_DECISIONS:
            raise InvalidStatus("Status must be 'approved' or 'rejected'.")

        object_id = to_object_id(account_id, "account identifier")
        account = self.users.find_one({"_id": object_id})
        if not account or account.get("role") not in APPROVABLE_ROLES:
            raise NotFound("Account request not found.")

        if account.get("role") == "shop":
            if not account.get("shop_id"):
                raise NotFound("Shop not found for this account.")
            action = "approve" if status == REQUEST_APPROVED else "reject"
            decision = self.verify_shop(account["shop_id"], action, reviewer_id)
            return TransitionResult(
                document=decision.owner,
                changed=decision.changed,
                notification_id=decision.notification_id,
            )

        previous = self._set_request_status(object_id, status, reviewer_id)
        updated = self.users.find_one({"_id": object_id})
        if updated is None:
            raise NotFound("Account request not found.")

        changed = previous is not None and previous.get("request_status") != status
        notification_id = self._after_request_decided(updated, status, changed, reviewer_id)
        return TransitionResult(updated, changed, notification_id)

    def _set_request_status(self, account_id: ObjectId, status: str, reviewer_id):
        verified = status == REQUEST_APPROVED
        now = self.clock()
        return self.users.find_one_and_update(
            {
                "_id": account_id,
                "$or": [
                    {"request_status": {"$ne": status}},
                    {"is_verified": {"$ne": verified}},
                ],
            },
            {
                "$set": {
                    "request_status": status,
                    "is_verified": verified,
                    "reviewed_at": now,
                    "reviewed_by": str(reviewer_id) if reviewer_id else None,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.BEFORE,
        )

    def _after_request_decided(self, account, status: str, changed: bool, reviewer_id):
        if not changed:
            return None

        self.logger.info(
            "Account %s request %s by %s", account["_id"], status, reviewer_id or "system"
        )
        self.audit.record(
            reviewer_id,
            f"Account request {status}",
            {"account_id": account["_id"], "role": account.get("role")},
        )
        notification_id = self.notifier.request_decided(account, status)
        if self.on_request_decided is not None:
            try:
                self.on_request_decided(account, status)
            except Exception as exc:
                self.logger.warning(
                    "Decision hook failed for account %s: %s", account["_id"], exc
                )
        return notification_id

    # --- Shop verification ---

    def verify_shop(self, shop_id, action, reviewer_id=None) -> ShopDecision:
        action = normalize_choice(action)
        if action not in SHOP_ACTIONS:
            raise InvalidAction("Action must be 'approve' or 'reject'.")

        shop_object_id = to_object_id(shop_id, "shop identifier")
        shop = self.shops.find_one({"_id": shop_object_id})
        if not shop:
            raise NotFound("Shop not found.")

        owner = None
        if shop.get("owner_id"):
            owner = self.users.find_one(
                {"_id": shop["owner_id"], "shop_id": shop_object_id}
            )
        if not owner:
            raise NotFound("Owner not found.")

        status = SHOP_ACTIONS[action]
        intent_id = self.intents.insert_one(
            {
                "kind": SHOP_VERIFICATION_INTENT,
                "shop_id": shop_object_id,
                "owner_id": owner["_id"],
                "action": action,
                "request_status": status,
                "reviewer_id": str(reviewer_id) if reviewer_id else None,
                "state": INTENT_PENDING,
                "created_at": self.clock(),
            }
        ).inserted_id

        claimed = self._claim_shop(shop_object_id, intent_id, status)
        if claimed is None and self._release_stale_claim(shop_object_id):
            claimed = self._claim_shop(shop_object_id, intent_id, status)
        if claimed is None:
            self.intents.update_one(
                {"_id": intent_id}, {"$set": {"state": INTENT_ABANDONED}}
            )
            raise IllegalTransition(
                "Another verification for this shop is in progress. Please retry."
            )

        return self._commit_shop_intent(
            intent_id, shop_object_id, owner["_id"], status, reviewer_id
        )

    def _claim_shop(self, shop_id, intent_id, status):
        return self.shops.find_one_and_update(
            {"_id": shop_id, "pending_intent_id": None},
            {
                "$set": {
                    "pending_intent_id": intent_id,
                    "is_verified": status == REQUEST_APPROVED,
                    "updated_at": self.clock(),
                }
            },
        )

    def _release_stale_claim(self, shop_id) -> bool:
        """Finish or drop a claim whose holder stopped before committing.

        Returns True when the shop is free to be claimed again. A claim held
        by a pending intent younger than ``stale_intent_after`` is left alone.
        """
        shop = self.shops.find_one({"_id": shop_id})
        if shop is None:
            return False
        holder_id = shop.get("pending_intent_id")
        if holder_id is None:
            return True

        holder = self.intents.find_one({"_id": holder_id})
        if holder is None or holder.get("state") != INTENT_PENDING:
            self.shops.update_one(
                {"_id": shop_id, "pending_intent_id": holder_id},
                {"$unset": {"pending_intent_id": ""}},
            )
            self.logger.warning(
                "Released orphaned claim %s on shop %s", holder_id, shop_id
            )
            return True

        created_at = holder.get("created_at")
        if created_at is None or created_at > self.clock() - self.stale_intent_after:
            return False
        self._finish_intent(holder, shop)
        return True

    def _finish_intent(self, intent, shop) -> None:
        self.shops.update_one(
            {"_id": intent["shop_id"], "pending_intent_id": intent["_id"]},
            {"$set": {"is_verified": intent["request_status"] == REQUEST_APPROVED}},
        )
        self._commit_shop_intent(
            intent["_id"],
            intent["shop_id"],
            intent["owner_id"],
            intent["request_status"],
            intent.get("reviewer_id"),
        )
        self.logger.warning(
            "Replayed interrupted shop verification %s for shop %s",
            intent["_id"],
            shop["_id"],
        )

    def _commit_shop_intent(self, intent_id, shop_id, owner_id, status, reviewer_id) -> ShopDecision:
        previous_owner = self._set_request_status(owner_id, status, reviewer_id)

        now = self.clock()
        self.shops.update_one(
            {"_id": shop_id, "pending_intent_id": intent_id},
            {"$unset": {"pending_intent_id": ""}},
        )
        self.intents.update_one(
            {"_id": intent_id},
            {"$set": {"state": INTENT_COMMITTED, "committed_at": now}},
        )

        shop = self.shops.find_one({"_id": shop_id})
        owner = self.users.find_one({"_id": owner_id})
        changed = previous_owner is not None and previous_owner.get("request_status") != status

        notification_id = None
        if changed:
            self.audit.record(
                reviewer_id,
                f"Shop {status}",
                {"shop_id": shop_id, "owner_id": owner_id},
            )
            notification_id = self._after_request_decided(owner, status, True, reviewer_id)
        return ShopDecision(shop=shop, owner=owner, changed=changed, notification_id=notification_id)

    def replay_pending_intents(self, older_than: timedelta = STALE_INTENT_AFTER) -> List[ObjectId]:
        """Finish shop verifications that stopped between the shop and owner writes."""
        cutoff = self.clock() - older_than
        replayed: List[ObjectId] = []
        pending = list(
            self.intents.find(
                {
                    "kind": SHOP_VERIFICATION_INTENT,
                    "state": INTENT_PENDING,
                    "created_at": {"$lte": cutoff},
                }
            )
        )
        for intent in pending:
            shop = self.shops.find_one(
                {"_id": intent["shop_id"], "pending_intent_id": intent["_id"]}
            )
            if shop is None:
                # The claim never landed, so neither write happened.
                self.intents.update_one(
                    {"_id": intent["_id"]}, {"$set": {"state": INTENT_ABANDONED}}
                )
                continue

            self._finish_intent(intent, shop)
            replayed.append(intent["_id"])
        return replayed

    # --- Order production status ---

    def advance_order(self, order_id, status, actor_id=None, cancel_reason=None) -> TransitionResult:
        status = normalize_choice(status)
        if status not in ORDER_STATUSES:
            raise InvalidStatus(f"Unknown order status '{status}'.")

        object_id = to_object_id(order_id, "order identifier")
        order = self.orders.find_one({"_id": object_id})
        if not order:
            raise NotFound("Order not found.")

        current = order.get("status") or INITIAL_ORDER_STATUS
        ensure_order_transition(current, status)

        reason = str(cancel_reason or "").strip() or None
        if status != ORDER_CANCELLED:
            reason = None
        return self._swap_order_status(order, current, status, actor_id, reason, forced=False)

    def force_order_status(self, order_id, status, actor_id, reason) -> TransitionResult:
        """Manual override: any enumerated status except the current one.

        Terminal orders stay immutable, and the override always needs a reason.
        """
        status = normalize_choice(status)
        if status not in ORDER_STATUSES:
            raise InvalidStatus(f"Unknown order status '{status}'.")
        reason = str(reason or "").strip()
        if not reason:
            raise InvalidInput("A reason is required to override an order status.")

        object_id = to_object_id(order_id, "order identifier")
        order = self.orders.find_one({"_id": object_id})
        if not order:
            raise NotFound("Order not found.")

        current = order.get("status") or INITIAL_ORDER_STATUS
        if current in TERMINAL_ORDER_STATUSES:
            raise IllegalTransition(
                f"Order is already {current} and can no longer change.",
                current_status=current,
            )
        if status == current:
            raise IllegalTransition(
                f"Order is already {current}.", current_status=current
            )
        return self._swap_order_status(order, current, status, actor_id, reason, forced=True)

    def _swap_order_status(self, order, current, status, actor_id, reason, forced) -> TransitionResult:
        now = self.clock()
        update_fields = {"status": status, "updated_at": now}
        if status == ORDER_CANCELLED and reason:
            update_fields["cancel_reason"] = reason
        history_entry = {
            "from": current,
            "to": status,
            "at": now,
            "by": str(actor_id) if actor_id else None,
            "forced": forced,
        }
        if forced:
            history_entry["reason"] = reason

        updated = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": current},
            {"$set": update_fields, "$push": {"status_history": history_entry}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            latest = self.orders.find_one({"_id": order["_id"]}) or {}
            raise IllegalTransition(
                "Order status changed while this update was in flight.",
                current_status=latest.get("status"),
            )

        self.logger.info(
            "Order %s moved %s -> %s%s",
            updated.get("order_code"),
            current,
            status,
            " (forced)" if forced else "",
        )
        self.audit.record(
            actor_id,
            "Forced order status" if forced else "Updated order status",
            {
                "order_code": updated.get("order_code"),
                "from": current,
                "to": status,
                "reason": reason,
            },
        )
        notification_id = self.notifier.order_status_changed(
            updated, current, status, cancel_reason=reason if status == ORDER_CANCELLED else None
        )
        return TransitionResult(updated, True, notification_id)
