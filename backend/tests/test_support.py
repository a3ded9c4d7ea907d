import logging
from datetime import datetime, timedelta

import pytest
import requests
import resend
from bson import ObjectId
from pymongo.errors import AutoReconnect

import alerts
from audit import AuditLog, sanitize_metadata
from notifications import NotificationEmitter, serialize_notification
from settings import ConfigurationError, Settings

logger = logging.getLogger("tests.support")


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def json(self):
        return self._payload


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "env-secret")
        monkeypatch.setenv("MONGO_TIMEOUT_MS", "1500")
        monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.example, https://b.example")
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.delenv("COOKIE_SECURE", raising=False)

        settings = Settings.from_env()

        assert settings.jwt_secret == "env-secret"
        assert settings.cookie_secure is True
        assert settings.cors_allowed_origins == ["https://a.example", "https://b.example"]
        assert settings.mongo_client_options() == {
            "serverSelectionTimeoutMS": 1500,
            "connectTimeoutMS": 1500,
            "socketTimeoutMS": 1500,
        }
        assert settings.token_ttl == timedelta(days=7)

    def test_legacy_secret_name(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("JWT_SECRET_KEY", "legacy-secret")
        assert Settings.from_env().jwt_secret == "legacy-secret"

    def test_blank_secret_is_rejected(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "   ")
        monkeypatch.delenv("JWT_SECRET_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_channels_disabled_by_default(self):
        settings = Settings(jwt_secret="x")
        assert settings.telegram_enabled() is False
        assert settings.decision_email_enabled() is False


class TestNotifications:
    def test_cancel_message_carries_reason(self, store):
        emitter = NotificationEmitter(store.notifications, logger)
        salesman_id = ObjectId()

        notification_id = emitter.order_status_changed(
            {"_id": ObjectId(), "order_code": "ORD-1", "salesman_id": salesman_id, "customer_name": "Asha"},
            "confirmed",
            "cancelled",
            cancel_reason="Out of stock",
        )

        stored = store.notifications.find_one({"_id": notification_id})
        assert stored["message"] == "Order ORD-1 for Asha has been cancelled. Reason: Out of stock"
        assert stored["type"] == "error"
        assert stored["metadata"]["cancel_reason"] == "Out of stock"
        assert serialize_notification(stored)["isRead"] is False

    def test_order_without_salesman_is_skipped(self, store):
        emitter = NotificationEmitter(store.notifications, logger)
        assert emitter.order_status_changed({"order_code": "ORD-2"}, "confirmed", "cancelled") is None
        assert store.notifications.count_documents({}) == 0

    def test_unknown_type_falls_back_to_info(self, store):
        emitter = NotificationEmitter(store.notifications, logger)
        notification_id = emitter.emit(ObjectId(), "Hi", "Body", notification_type="shout")
        assert store.notifications.find_one({"_id": notification_id})["type"] == "info"


class TestAudit:
    def test_metadata_is_stringified(self):
        assert sanitize_metadata({"id": ObjectId("64b000000000000000000001"), "skip": None}) == {
            "id": "64b000000000000000000001"
        }

    def test_datetimes_are_iso_formatted(self):
        stamp = datetime(2026, 3, 1, 9, 30)
        assert sanitize_metadata({"at": stamp, "count": 3}) == {"at": "2026-03-01T09:30:00", "count": "3"}

    def test_non_dict_metadata(self):
        assert sanitize_metadata(["a"]) == {}

    def test_store_failure_is_logged(self, store, caplog):
        class Broken:
            def insert_one(self, document):
                raise AutoReconnect("down")

        with caplog.at_level(logging.WARNING, logger="tests.support"):
            AuditLog(Broken(), store.users, logger).record(None, "Something")
        assert "Unable to record audit log" in caplog.text


class TestAlerts:
    def test_telegram_skipped_when_unconfigured(self, monkeypatch):
        def unexpected(*args, **kwargs):
            raise AssertionError("network call")

        monkeypatch.setattr(alerts.requests, "post", unexpected)
        sent, reason = alerts.send_new_order_alert(Settings(jwt_secret="x"), {"order_code": "ORD-1"})
        assert sent is False
        assert "not configured" in reason

    def test_new_order_alert(self, monkeypatch):
        captured = {}

        def fake_post(url, json, timeout):
            captured.update(url=url, json=json, timeout=timeout)
            return FakeResponse({"ok": True})

        monkeypatch.setattr(alerts.requests, "post", fake_post)
        settings = Settings(jwt_secret="x", telegram_bot_token="bot-token", telegram_chat_id="42")

        sent, reason = alerts.send_new_order_alert(
            settings,
            {"order_code": "ORD-9", "product_name": "Bangle", "customer_name": "Isha"},
            salesman_name="Ravi",
        )

        assert (sent, reason) == (True, None)
        assert captured["url"].endswith("/botbot-token/sendMessage")
        assert captured["json"]["chat_id"] == "42"
        assert "ORD-9" in captured["json"]["text"]
        assert "Ravi" in captured["json"]["text"]

    def test_telegram_network_error(self, monkeypatch):
        def broken_post(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(alerts.requests, "post", broken_post)
        settings = Settings(jwt_secret="x", telegram_bot_token="t", telegram_chat_id="1")
        sent, reason = alerts.send_telegram_message(settings, "hello")
        assert sent is False
        assert "refused" in reason

    def test_decision_email(self, monkeypatch):
        sent_payloads = []

        def fake_send(payload):
            sent_payloads.append(payload)
            return {"id": "email-1"}

        monkeypatch.setattr(resend.Emails, "send", fake_send)
        settings = Settings(jwt_secret="x", resend_api_key="re_test")

        sent, reason = alerts.send_request_decision_email(
            settings, {"name": "Ravi", "email": "ravi@example.com"}, "approved"
        )

        assert (sent, reason) == (True, None)
        assert sent_payloads[0]["to"] == ["ravi@example.com"]
        assert sent_payloads[0]["subject"] == "Your account has been approved"

    def test_decision_email_needs_api_key(self, monkeypatch):
        def unexpected(payload):
            raise AssertionError("network call")

        monkeypatch.setattr(resend.Emails, "send", unexpected)
        sent, reason = alerts.send_request_decision_email(
            Settings(jwt_secret="x"), {"name": "Ravi", "email": "ravi@example.com"}, "approved"
        )
        assert sent is False
        assert "not configured" in reason

    def test_decision_email_rejected_by_provider(self, monkeypatch):
        monkeypatch.setattr(resend.Emails, "send", lambda payload: {"message": "domain not verified"})
        settings = Settings(jwt_secret="x", resend_api_key="re_test")

        sent, reason = alerts.send_request_decision_email(
            settings, {"name": "Ravi", "email": "ravi@example.com"}, "rejected"
        )

        assert sent is False
        assert "domain not verified" in reason

    def test_decision_email_without_address(self):
        settings = Settings(jwt_secret="x", resend_api_key="re_test")
        sent, reason = alerts.send_request_decision_email(settings, {"name": "Ravi"}, "rejected")
        assert sent is False
