import math
import re
from datetime import datetime
from typing import Dict, List, Optional

import bcrypt
from bson import ObjectId
from flask import Flask, g, jsonify, redirect, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager, set_access_cookies
from flask_pymongo import PyMongo
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from alerts import send_new_order_alert, send_request_decision_email
from api_errors import (
    AuthenticationFailure,
    AuthorizationFailure,
    DependencyFailure,
    InvalidInput,
    InvalidStatus,
    NotFound,
    WorkflowError,
    error_response,
)
from audit import AuditLog, serialize_audit_log
from auth_tokens import TokenCodec
from cli import register_cli
from guards import admin_required, roles_required
from notifications import NotificationEmitter, serialize_notification
from route_gateway import (
    TOKEN_COOKIE_NAME,
    Role,
    install_gateway,
    landing_for,
)
from settings import Settings
from workflow import (
    APPROVABLE_ROLES,
    INITIAL_ORDER_STATUS,
    ORDER_PIPELINE,
    ORDER_STATUSES,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_STATUSES,
    ApprovalWorkflow,
    next_order_status,
    normalize_choice,
    to_object_id,
)

ORDER_PRIORITIES = {"low", "medium", "high", "urgent"}
MAX_PAGE_SIZE = 100
MAX_BULK_ORDERS = 200


def create_app(settings: Optional[Settings] = None, db=None) -> Flask:
    """Create and configure the Flask application.

    ``settings`` defaults to the environment; a missing signing secret aborts
    start-up. ``db`` is the document store handle; when omitted a PyMongo
    client is built from ``settings.mongo_uri``.
    """
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    # Honor proxy headers so redirects keep the public HTTPS origin.
    if settings.trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=settings.trusted_proxy_hops,
            x_proto=settings.trusted_proxy_hops,
            x_host=settings.trusted_proxy_hops,
            x_port=settings.trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = settings.jwt_secret
    app.config["JWT_TOKEN_LOCATION"] = ["cookies"]
    app.config["JWT_ACCESS_COOKIE_NAME"] = TOKEN_COOKIE_NAME
    app.config["JWT_ACCESS_COOKIE_PATH"] = "/"
    app.config["JWT_COOKIE_SECURE"] = settings.cookie_secure
    app.config["JWT_COOKIE_SAMESITE"] = "Lax"
    app.config["JWT_COOKIE_CSRF_PROTECT"] = False
    app.config["JWT_SESSION_COOKIE"] = False
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = settings.token_ttl
    app.config["MONGO_URI"] = settings.mongo_uri

    # --- Initialize extensions ---
    CORS(
        app,
        supports_credentials=True,
        origins=settings.cors_allowed_origins or "*",
    )
    JWTManager(app)

    if db is None:
        mongo = PyMongo(app, **settings.mongo_client_options())
        db = mongo.db

    codec = TokenCodec(settings.jwt_secret, ttl=settings.token_ttl)
    notifier = NotificationEmitter(db.notifications, app.logger)
    audit_log = AuditLog(db.audit_logs, db.users, app.logger)

    def notify_decision_by_email(account_document, request_status: str):
        if not settings.decision_email_enabled():
            return
        sent, error_details = send_request_decision_email(
            settings, account_document, request_status
        )
        if not sent:
            app.logger.warning(
                "Decision e-mail for %s not delivered: %s",
                account_document.get("_id"),
                error_details,
            )

    workflow = ApprovalWorkflow(
        db,
        notifier,
        audit_log,
        app.logger,
        on_request_decided=notify_decision_by_email,
    )

    app.extensions["settings"] = settings
    app.extensions["store"] = db
    app.extensions["token_codec"] = codec
    app.extensions["workflow"] = workflow

    try:
        db.users.create_index("email", unique=True, sparse=True)
        db.users.create_index("mobile", unique=True, sparse=True)
        db.shops.create_index("owner_id")
        db.orders.create_index("order_code", unique=True)
        db.orders.create_index([("salesman_id", 1), ("created_at", -1)])
        db.notifications.create_index([("user_id", 1), ("created_at", -1)])
        db.workflow_intents.create_index([("state", 1), ("created_at", 1)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure collection indexes: %s", exc)
    audit_log.ensure_indexes()

    install_gateway(app)
    register_cli(app)

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    # --- Helpers ---

    def normalize_email(value: Optional[str]) -> str:
        return str(value or "").strip().lower()

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = normalize_email(value)
        return bool(normalized and email_regex.match(normalized))

    def normalize_mobile(value: Optional[str]) -> str:
        return re.sub(r"[\s\-()]", "", str(value or "").strip())

    def isoformat(value) -> Optional[str]:
        if not isinstance(value, datetime):
            return None
        if value.tzinfo is not None:
            return value.isoformat()
        return f"{value.isoformat()}Z"

    def parse_iso_date(value: Optional[str]) -> Optional[datetime]:
        candidate = str(value or "").strip()
        if not candidate:
            return None
        normalized = candidate.replace("Z", "+00:00")
        if re.fullmatch(r"\d{4}-\d{2}-\d{2}", candidate):
            normalized = f"{candidate}T00:00:00"
        try:
            return datetime.fromisoformat(normalized)
        except ValueError:
            raise InvalidInput(f"'{candidate}' is not a valid date.")

    def json_payload() -> Dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def pagination_args(default_limit: int = 20):
        page = max(request.args.get("page", 1, type=int) or 1, 1)
        limit = request.args.get("limit", default_limit, type=int) or default_limit
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        return page, limit

    def pagination_payload(page: int, limit: int, total: int) -> Dict[str, int]:
        return {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        }

    def hash_password(password: str) -> bytes:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())

    def password_matches(password: str, stored_hash) -> bool:
        if not stored_hash:
            return False
        if isinstance(stored_hash, str):
            stored_hash = stored_hash.encode("utf-8")
        try:
            return bcrypt.checkpw(password.encode("utf-8"), bytes(stored_hash))
        except ValueError:
            return False

    def find_account_by_identifier(identifier: str):
        if "@" in identifier:
            return db.users.find_one({"email": normalize_email(identifier)})
        return db.users.find_one({"mobile": normalize_mobile(identifier)})

    def identifier_taken(email: str, mobile: str) -> bool:
        clauses = []
        if email:
            clauses.append({"email": email})
        if mobile:
            clauses.append({"mobile": mobile})
        return bool(clauses) and db.users.find_one({"$or": clauses}) is not None

    def promote_default_admin(user_document):
        email = normalize_email(user_document.get("email"))
        if not settings.default_admin_email or email != settings.default_admin_email:
            return user_document
        if (
            user_document.get("role") == Role.ADMIN.value
            and user_document.get("is_verified")
            and user_document.get("request_status") == REQUEST_APPROVED
        ):
            return user_document
        return db.users.find_one_and_update(
            {"_id": user_document["_id"]},
            {
                "$set": {
                    "role": Role.ADMIN.value,
                    "is_verified": True,
                    "request_status": REQUEST_APPROVED,
                    "is_blocked": False,
                    "updated_at": datetime.utcnow(),
                }
            },
            return_document=ReturnDocument.AFTER,
        )

    def serialize_account(user_document) -> Dict[str, object]:
        if not user_document:
            return {}
        shop_id = user_document.get("shop_id")
        return {
            "id": str(user_document.get("_id")),
            "name": user_document.get("name", "") or "",
            "email": user_document.get("email", "") or "",
            "mobile": user_document.get("mobile", "") or "",
            "role": user_document.get("role", ""),
            "isVerified": bool(user_document.get("is_verified")),
            "requestStatus": user_document.get("request_status") or REQUEST_PENDING,
            "isBlocked": bool(user_document.get("is_blocked")),
            "shopId": str(shop_id) if shop_id else None,
            "shopName": user_document.get("shop_name", "") or "",
            "shopAddress": user_document.get("shop_address", "") or "",
            "shopMobile": user_document.get("shop_mobile", "") or "",
            "createdAt": isoformat(user_document.get("created_at")),
            "reviewedAt": isoformat(user_document.get("reviewed_at")),
            "lastLoginAt": isoformat(user_document.get("last_login_at")),
        }

    def serialize_shop(shop_document, owner_document=None) -> Dict[str, object]:
        if not shop_document:
            return {}
        owner_id = shop_document.get("owner_id")
        serialized = {
            "id": str(shop_document.get("_id")),
            "shopName": shop_document.get("shop_name", "") or "",
            "ownerId": str(owner_id) if owner_id else None,
            "address": shop_document.get("address", "") or "",
            "gstNumber": shop_document.get("gst_number", "") or "",
            "isVerified": bool(shop_document.get("is_verified")),
            "isActive": bool(shop_document.get("is_active", True)),
            "createdAt": isoformat(shop_document.get("created_at")),
            "updatedAt": isoformat(shop_document.get("updated_at")),
        }
        if owner_document is not None:
            serialized["owner"] = {
                "id": str(owner_document.get("_id")),
                "name": owner_document.get("name", "") or "",
                "email": owner_document.get("email", "") or "",
                "mobile": owner_document.get("mobile", "") or "",
                "requestStatus": owner_document.get("request_status") or REQUEST_PENDING,
                "isVerified": bool(owner_document.get("is_verified")),
            }
        return serialized

    def serialize_order(order_document) -> Dict[str, object]:
        if not order_document:
            return {}
        salesman_id = order_document.get("salesman_id")
        status = order_document.get("status") or INITIAL_ORDER_STATUS
        history = []
        for entry in order_document.get("status_history") or []:
            history.append(
                {
                    "from": entry.get("from"),
                    "to": entry.get("to"),
                    "at": isoformat(entry.get("at")),
                    "by": entry.get("by"),
                    "forced": bool(entry.get("forced")),
                }
            )
        return {
            "id": str(order_document.get("_id")),
            "orderCode": order_document.get("order_code", ""),
            "productName": order_document.get("product_name", ""),
            "customerName": order_document.get("customer_name", ""),
            "customizationDetails": order_document.get("customization_details", "") or "",
            "karatage": order_document.get("karatage", "") or "",
            "weight": order_document.get("weight"),
            "colour": order_document.get("colour", "") or "",
            "priority": order_document.get("priority", "medium"),
            "expectedDeliveryDate": isoformat(order_document.get("expected_delivery_date")),
            "status": status,
            "nextStatus": next_order_status(status),
            "cancelReason": order_document.get("cancel_reason"),
            "salesmanId": str(salesman_id) if salesman_id else None,
            "statusHistory": history,
            "createdAt": isoformat(order_document.get("created_at")),
            "updatedAt": isoformat(order_document.get("updated_at")),
        }

    def count_orders_by_status(query: Dict) -> Dict[str, int]:
        counts = {status: 0 for status in ORDER_PIPELINE + ("cancelled",)}
        for row in db.orders.aggregate(
            [{"$match": query}, {"$group": {"_id": "$status", "count": {"$sum": 1}}}]
        ):
            if row["_id"] in counts:
                counts[row["_id"]] = row["count"]
        return counts

    def next_order_code(now: datetime) -> str:
        day = now.strftime("%Y%m%d")
        counter = db.counters.find_one_and_update(
            {"name": f"order-{day}"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return f"ORD-{day}-{int(counter['seq']):05d}"

    def order_filter_from_args(base: Dict) -> Dict:
        query = dict(base)
        status = normalize_choice(request.args.get("status"))
        if status and status != "all":
            if status not in ORDER_STATUSES:
                raise InvalidStatus(f"Unknown order status '{status}'.")
            query["status"] = status
        return query

    def pending_shop_filter(owner_ids: Optional[List[ObjectId]] = None) -> Dict:
        # Owner status is authoritative; an interrupted approval can leave the
        # shop flag set while its owner is still pending.
        if owner_ids is None:
            owner_ids = db.users.distinct(
                "_id", {"role": Role.SHOP.value, "request_status": REQUEST_PENDING}
            )
        return {"owner_id": {"$in": owner_ids}}

    def current_account_id() -> ObjectId:
        return to_object_id(g.identity.account_id, "account identifier")

    # --- Error handlers ---

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(exc: WorkflowError):
        return error_response(exc)

    @app.errorhandler(PyMongoError)
    def handle_store_error(exc: PyMongoError):
        app.logger.error("Document store failure on %s: %s", request.path, exc)
        return error_response(DependencyFailure())

    @app.errorhandler(404)
    def handle_not_found(exc):
        return error_response(NotFound())

    # --- Public entry point ---

    @app.route("/")
    def public_entry():
        landing = landing_for(request.cookies.get(TOKEN_COOKIE_NAME), codec)
        if landing:
            return redirect(landing)
        return jsonify({"message": "Sign in to continue.", "login": "/api/login"})

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # --- Registration ---

    @app.route("/api/register-shop-owner", methods=["POST"])
    def register_shop_owner():
        payload = json_payload()
        name = str(payload.get("name", "")).strip()
        email = normalize_email(payload.get("email"))
        mobile = normalize_mobile(payload.get("mobile"))
        password = str(payload.get("password", ""))
        shop_name = str(payload.get("shopName", "")).strip()
        gst_number = str(payload.get("gstNumber", "")).strip()
        address_parts = [
            str(payload.get(field, "")).strip() for field in ("address", "city", "state")
        ]
        pincode = str(payload.get("pincode", "")).strip()

        if not name or not password or not shop_name or not address_parts[0]:
            raise InvalidInput("Name, password, shop name, and address are required.")
        if not email and not mobile:
            raise InvalidInput("An email address or mobile number is required.")
        if email and not is_valid_email(email):
            raise InvalidInput("Please provide a valid email address.")
        if identifier_taken(email, mobile):
            raise InvalidInput("User with this email or mobile already exists.")

        address = ", ".join(part for part in address_parts if part)
        if pincode:
            address = f"{address} - {pincode}"

        now = datetime.utcnow()
        shop_id = ObjectId()
        user_document = {
            "name": name,
            "password": hash_password(password),
            "role": Role.SHOP.value,
            "is_verified": False,
            "request_status": REQUEST_PENDING,
            "is_blocked": False,
            "shop_id": shop_id,
            "created_at": now,
            "updated_at": now,
        }
        if email:
            user_document["email"] = email
        if mobile:
            user_document["mobile"] = mobile

        try:
            user_id = db.users.insert_one(user_document).inserted_id
        except DuplicateKeyError:
            raise InvalidInput("User with this email or mobile already exists.")

        try:
            db.shops.insert_one(
                {
                    "_id": shop_id,
                    "shop_name": shop_name,
                    "owner_id": user_id,
                    "address": address,
                    "gst_number": gst_number,
                    "is_verified": False,
                    "is_active": True,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except PyMongoError:
            db.users.delete_one({"_id": user_id, "shop_id": shop_id})
            raise

        audit_log.record(user_id, "Registered shop owner", {"shop_id": shop_id})

        return (
            jsonify(
                {
                    "message": "Registration successful. Awaiting approval.",
                    "userId": str(user_id),
                    "shopId": str(shop_id),
                }
            ),
            201,
        )

    @app.route("/api/salesman/register", methods=["POST"])
    def register_salesman():
        payload = json_payload()
        name = str(payload.get("name", "")).strip()
        email = normalize_email(payload.get("email"))
        mobile = normalize_mobile(payload.get("mobile"))
        password = str(payload.get("password", ""))

        if not name or not mobile or not password:
            raise InvalidInput("Name, mobile, and password are required.")
        if email and not is_valid_email(email):
            raise InvalidInput("Please provide a valid email address.")
        if identifier_taken(email, mobile):
            raise InvalidInput("User with this email or mobile already exists.")

        now = datetime.utcnow()
        user_document = {
            "name": name,
            "mobile": mobile,
            "password": hash_password(password),
            "role": Role.SALESMAN.value,
            "is_verified": False,
            "request_status": REQUEST_PENDING,
            "is_blocked": False,
            "shop_name": str(payload.get("shopName", "")).strip(),
            "shop_address": str(payload.get("shopAddress", "")).strip(),
            "shop_mobile": normalize_mobile(payload.get("shopMobile")),
            "created_at": now,
            "updated_at": now,
        }
        if email:
            user_document["email"] = email

        try:
            user_id = db.users.insert_one(user_document).inserted_id
        except DuplicateKeyError:
            raise InvalidInput("User with this email or mobile already exists.")

        audit_log.record(user_id, "Registered salesman")

        return (
            jsonify(
                {
                    "message": "Salesman registration successful. Awaiting approval.",
                    "userId": str(user_id),
                }
            ),
            201,
        )

    # --- Session ---

    @app.route("/api/login", methods=["POST"])
    def login():
        payload = json_payload()
        identifier = str(payload.get("identifier") or payload.get("email") or "").strip()
        password = str(payload.get("password", ""))

        if not identifier or not password:
            raise InvalidInput("Identifier and password are required.")

        user = find_account_by_identifier(identifier)
        if not user or not password_matches(password, user.get("password")):
            raise AuthenticationFailure("Invalid credentials.")

        user = promote_default_admin(user)

        if user.get("is_blocked"):
            raise AuthorizationFailure("Account is blocked. Please contact support.")
        if not user.get("is_verified"):
            raise AuthorizationFailure(
                "Account is pending approval. Please wait for admin approval.",
                requestStatus=user.get("request_status") or REQUEST_PENDING,
            )

        db.users.update_one(
            {"_id": user["_id"]}, {"$set": {"last_login_at": datetime.utcnow()}}
        )

        issued = codec.issue(
            str(user["_id"]),
            user.get("role", ""),
            bool(user.get("is_verified")),
            bool(user.get("is_blocked")),
        )

        audit_log.record(
            user["_id"],
            "Signed in",
            {"ip": request.headers.get("X-Forwarded-For", request.remote_addr)},
        )

        response = jsonify(
            {
                "message": "Login successful",
                "token": issued.token,
                "expiresAt": isoformat(issued.expires_at),
                "user": serialize_account(user),
            }
        )
        set_access_cookies(
            response, issued.token, max_age=int(settings.token_ttl.total_seconds())
        )
        return response

    @app.route("/api/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "Logged out successfully"})
        response.delete_cookie(
            TOKEN_COOKIE_NAME,
            path="/",
            secure=settings.cookie_secure,
            httponly=True,
            samesite="Lax",
        )
        return response

    # --- Restricted area landing pages ---

    @app.route("/admin")
    def admin_home():
        return jsonify(
            {
                "area": "admin",
                "pendingAccounts": db.users.count_documents(
                    {"role": Role.SALESMAN.value, "request_status": REQUEST_PENDING}
                ),
                "pendingShops": db.shops.count_documents(pending_shop_filter()),
                "ordersByStatus": count_orders_by_status({}),
            }
        )

    @app.route("/salesman")
    def salesman_home():
        salesman_id = current_account_id()
        return jsonify(
            {
                "area": "salesman",
                "ordersByStatus": count_orders_by_status({"salesman_id": salesman_id}),
                "unreadNotifications": db.notifications.count_documents(
                    {"user_id": salesman_id, "is_read": False}
                ),
            }
        )

    # --- Admin: account and shop requests ---

    @app.route("/api/admin/account-requests", methods=["GET"])
    @admin_required
    def list_account_requests():
        status = normalize_choice(request.args.get("status") or REQUEST_PENDING)
        role = normalize_choice(request.args.get("role"))

        query: Dict[str, object] = {"role": {"$in": sorted(APPROVABLE_ROLES)}}
        if role:
            if role not in APPROVABLE_ROLES:
                raise InvalidInput("Role must be 'shop' or 'salesman'.")
            query["role"] = role
        if status != "all":
            if status not in REQUEST_STATUSES:
                raise InvalidStatus("Status must be pending, approved, rejected, or all.")
            query["request_status"] = status

        cursor = db.users.find(query).sort([("created_at", -1), ("_id", -1)])
        return jsonify({"accounts": [serialize_account(user) for user in cursor]})

    @app.route("/api/admin/accounts/<account_id>/request", methods=["PATCH"])
    @admin_required
    def review_account_request(account_id: str):
        payload = json_payload()
        result = workflow.review_account(
            account_id, payload.get("status"), reviewer_id=g.identity.account_id
        )
        return jsonify(
            {
                "message": f"Account request {result.document.get('request_status')}.",
                "changed": result.changed,
                "account": serialize_account(result.document),
            }
        )

    @app.route("/api/admin/shop-requests", methods=["GET"])
    @admin_required
    def list_shop_requests():
        owners = {
            owner["_id"]: owner
            for owner in db.users.find(
                {"role": Role.SHOP.value, "request_status": REQUEST_PENDING}
            )
        }
        cursor = db.shops.find(pending_shop_filter(list(owners))).sort(
            [("created_at", -1), ("_id", -1)]
        )
        pending = [serialize_shop(shop, owners[shop["owner_id"]]) for shop in cursor]
        return jsonify({"shops": pending})

    @app.route("/api/admin/shop-requests/<shop_id>", methods=["GET"])
    @admin_required
    def get_shop_request(shop_id: str):
        shop = db.shops.find_one({"_id": to_object_id(shop_id, "shop identifier")})
        if not shop:
            raise NotFound("Shop not found.")
        owner = db.users.find_one({"_id": shop.get("owner_id")}) if shop.get("owner_id") else None
        return jsonify({"shop": serialize_shop(shop, owner or {})})

    @app.route("/api/admin/shop-requests/<shop_id>", methods=["PATCH"])
    @admin_required
    def decide_shop_request(shop_id: str):
        payload = json_payload()
        decision = workflow.verify_shop(
            shop_id, payload.get("action"), reviewer_id=g.identity.account_id
        )
        return jsonify(
            {
                "message": "Shop approved." if decision.shop.get("is_verified") else "Shop rejected.",
                "changed": decision.changed,
                "shop": serialize_shop(decision.shop, decision.owner),
            }
        )

    @app.route("/api/admin/salesmen/<user_id>", methods=["PATCH"])
    @admin_required
    def update_salesman_block(user_id: str):
        payload = json_payload()
        is_blocked = payload.get("isBlocked")
        if not isinstance(is_blocked, bool):
            raise InvalidInput("isBlocked must be true or false.")

        updated = db.users.find_one_and_update(
            {"_id": to_object_id(user_id, "user identifier"), "role": Role.SALESMAN.value},
            {"$set": {"is_blocked": is_blocked, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Salesman not found.")

        audit_log.record(
            g.identity.account_id,
            "Blocked salesman" if is_blocked else "Unblocked salesman",
            {"salesman_id": updated["_id"]},
        )
        return jsonify(
            {
                "message": "Salesman status updated successfully.",
                "salesman": serialize_account(updated),
            }
        )

    # --- Admin: orders ---

    @app.route("/api/admin/orders", methods=["GET"])
    @admin_required
    def list_all_orders():
        page, limit = pagination_args()
        query = order_filter_from_args({})
        cursor = (
            db.orders.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        orders = [serialize_order(document) for document in cursor]
        total = db.orders.count_documents(query)
        return jsonify({"orders": orders, "pagination": pagination_payload(page, limit, total)})

    @app.route("/api/admin/orders/<order_id>", methods=["GET"])
    @admin_required
    def get_order(order_id: str):
        order = db.orders.find_one({"_id": to_object_id(order_id, "order identifier")})
        if not order:
            raise NotFound("Order not found.")
        return jsonify({"order": serialize_order(order)})

    @app.route("/api/admin/orders/<order_id>/status", methods=["PUT"])
    @admin_required
    def update_order_status(order_id: str):
        payload = json_payload()
        result = workflow.advance_order(
            order_id,
            payload.get("status"),
            actor_id=g.identity.account_id,
            cancel_reason=payload.get("cancelReason"),
        )
        return jsonify({"message": "Order updated", "order": serialize_order(result.document)})

    @app.route("/api/admin/orders/<order_id>/status/force", methods=["POST"])
    @admin_required
    def force_order_status(order_id: str):
        payload = json_payload()
        result = workflow.force_order_status(
            order_id,
            payload.get("status"),
            actor_id=g.identity.account_id,
            reason=payload.get("reason"),
        )
        return jsonify({"message": "Order status overridden", "order": serialize_order(result.document)})

    @app.route("/api/admin/orders/bulk-status", methods=["PUT"])
    @admin_required
    def bulk_update_order_status():
        payload = json_payload()
        order_ids = payload.get("ids")
        status = payload.get("status")
        if not isinstance(order_ids, list) or not order_ids or not status:
            raise InvalidInput("Provide a list of order ids and a status.")
        if len(order_ids) > MAX_BULK_ORDERS:
            raise InvalidInput(f"At most {MAX_BULK_ORDERS} orders can be updated at once.")

        results: List[Dict[str, object]] = []
        for order_id in order_ids:
            try:
                result = workflow.advance_order(
                    order_id, status, actor_id=g.identity.account_id
                )
            except WorkflowError as exc:
                results.append({"id": str(order_id), "ok": False, **exc.to_dict()})
                continue
            results.append(
                {"id": str(order_id), "ok": True, "status": result.document.get("status")}
            )

        updated = sum(1 for entry in results if entry["ok"])
        return jsonify(
            {
                "message": f"Updated {updated} of {len(results)} orders.",
                "updated": updated,
                "results": results,
            }
        )

    @app.route("/api/admin/logs", methods=["GET"])
    @admin_required
    def admin_list_logs():
        page, limit = pagination_args(default_limit=50)
        search_term = (request.args.get("search") or "").strip()

        query: Dict[str, object] = {}
        if search_term:
            regex = re.compile(re.escape(search_term), re.IGNORECASE)
            query["$or"] = [{"actor_name": regex}, {"action": regex}]

        cursor = (
            db.audit_logs.find(query)
            .sort("created_at", -1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        logs = [serialize_audit_log(document) for document in cursor]
        total = db.audit_logs.count_documents(query)
        return jsonify({"logs": logs, "pagination": pagination_payload(page, limit, total)})

    # --- Salesman: orders ---

    @app.route("/api/salesman/orders", methods=["POST"])
    @roles_required(Role.SALESMAN)
    def create_order():
        payload = json_payload()
        product_name = str(payload.get("productName", "")).strip()
        customer_name = str(payload.get("customerName", "")).strip()
        if not product_name or not customer_name:
            raise InvalidInput("Product name and customer name are required.")

        priority = normalize_choice(payload.get("priority") or "medium")
        if priority not in ORDER_PRIORITIES:
            raise InvalidInput("Priority must be low, medium, high, or urgent.")

        weight = payload.get("weight")
        if weight is not None:
            try:
                weight = float(weight)
            except (TypeError, ValueError):
                raise InvalidInput("Weight must be a number.")

        salesman_id = current_account_id()
        now = datetime.utcnow()
        order_document = {
            "order_code": next_order_code(now),
            "product_name": product_name,
            "customer_name": customer_name,
            "customization_details": str(payload.get("customizationDetails", "")).strip(),
            "karatage": str(payload.get("karatage", "")).strip(),
            "weight": weight,
            "colour": str(payload.get("colour", "")).strip(),
            "priority": priority,
            "expected_delivery_date": parse_iso_date(payload.get("expectedDeliveryDate")),
            "salesman_id": salesman_id,
            "status": INITIAL_ORDER_STATUS,
            "status_history": [],
            "created_at": now,
            "updated_at": now,
        }
        order_document["_id"] = db.orders.insert_one(order_document).inserted_id

        salesman = db.users.find_one({"_id": salesman_id}) or {}
        if settings.telegram_enabled():
            sent, error_details = send_new_order_alert(
                settings, order_document, salesman.get("name")
            )
            if not sent:
                app.logger.warning(
                    "New order alert for %s not delivered: %s",
                    order_document["order_code"],
                    error_details,
                )

        audit_log.record(
            salesman_id, "Created order", {"order_code": order_document["order_code"]}
        )
        return (
            jsonify({"message": "Order created successfully", "order": serialize_order(order_document)}),
            201,
        )

    @app.route("/api/salesman/orders", methods=["GET"])
    @roles_required(Role.SALESMAN)
    def list_salesman_orders():
        page, limit = pagination_args(default_limit=10)
        query = order_filter_from_args({"salesman_id": current_account_id()})
        cursor = (
            db.orders.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        orders = [serialize_order(document) for document in cursor]
        total = db.orders.count_documents(query)
        return jsonify({"orders": orders, "pagination": pagination_payload(page, limit, total)})

    @app.route("/api/salesman/orders/<order_id>", methods=["GET"])
    @roles_required(Role.SALESMAN)
    def get_salesman_order(order_id: str):
        order = db.orders.find_one(
            {
                "_id": to_object_id(order_id, "order identifier"),
                "salesman_id": current_account_id(),
            }
        )
        if not order:
            raise NotFound("Order not found.")
        return jsonify({"order": serialize_order(order)})

    # --- Salesman: notifications ---

    @app.route("/api/salesman/notifications", methods=["GET"])
    @roles_required(Role.SALESMAN)
    def list_notifications():
        page, limit = pagination_args()
        salesman_id = current_account_id()
        query: Dict[str, object] = {"user_id": salesman_id}

        is_read = request.args.get("isRead")
        if is_read is not None:
            query["is_read"] = is_read.strip().lower() == "true"
        notification_type = normalize_choice(request.args.get("type"))
        if notification_type and notification_type != "all":
            query["type"] = notification_type

        cursor = (
            db.notifications.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        notifications = [serialize_notification(document) for document in cursor]
        total = db.notifications.count_documents(query)
        unread_count = db.notifications.count_documents(
            {"user_id": salesman_id, "is_read": False}
        )
        return jsonify(
            {
                "notifications": notifications,
                "pagination": pagination_payload(page, limit, total),
                "unreadCount": unread_count,
            }
        )

    @app.route("/api/salesman/notifications", methods=["PUT"])
    @roles_required(Role.SALESMAN)
    def update_notifications():
        payload = json_payload()
        action = str(payload.get("action", "")).strip()
        salesman_id = current_account_id()

        if action == "markAsRead":
            raw_ids = payload.get("notificationIds")
            if not isinstance(raw_ids, list) or not raw_ids:
                raise InvalidInput("notificationIds must be a non-empty list.")
            notification_ids = [
                to_object_id(value, "notification identifier") for value in raw_ids
            ]
            result = db.notifications.update_many(
                {"_id": {"$in": notification_ids}, "user_id": salesman_id},
                {"$set": {"is_read": True}},
            )
            return jsonify(
                {"message": "Notifications marked as read", "modifiedCount": result.modified_count}
            )

        if action == "markAllAsRead":
            result = db.notifications.update_many(
                {"user_id": salesman_id, "is_read": False},
                {"$set": {"is_read": True}},
            )
            return jsonify(
                {"message": "All notifications marked as read", "modifiedCount": result.modified_count}
            )

        raise InvalidInput("Action must be 'markAsRead' or 'markAllAsRead'.")

    return app


if __name__ == "__main__":
    import os

    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
