from datetime import datetime, timedelta, timezone

import pytest

from auth_tokens import TokenCodec
from route_gateway import ROLE_AREAS, Role, decide_route, landing_for

SECRET = "gateway-secret-0123456789-abcdefghijklmnopq"


@pytest.fixture()
def gateway_codec():
    return TokenCodec(SECRET)


def token_for(codec, role, is_verified=True, is_blocked=False):
    return codec.issue("64b000000000000000000001", role, is_verified, is_blocked).token


class TestDecideRoute:
    @pytest.mark.parametrize("path", ["/", "/api/login", "/api/admin/orders", "/administrator", "/health"])
    def test_unrestricted_paths_forward_without_token(self, gateway_codec, path):
        decision = decide_route(path, None, gateway_codec)
        assert decision.forward is True

    @pytest.mark.parametrize("path", ["/admin", "/admin/orders", "/salesman/track-orders/1"])
    def test_missing_token_redirects_to_public_root(self, gateway_codec, path):
        decision = decide_route(path, None, gateway_codec)
        assert decision.forward is False
        assert decision.location == "/"

    def test_expired_token_redirects(self, gateway_codec):
        past = datetime.now(timezone.utc) - timedelta(days=8)
        token = token_for(TokenCodec(SECRET, clock=lambda: past), "admin")

        decision = decide_route("/admin", token, gateway_codec)
        assert (decision.forward, decision.location) == (False, "/")

    def test_tampered_token_redirects(self, gateway_codec):
        token = token_for(TokenCodec("not-the-gateway-secret-0123456789-abcdefgh"), "admin")

        decision = decide_route("/admin", token, gateway_codec)
        assert (decision.forward, decision.location) == (False, "/")

    @pytest.mark.parametrize("role", ["admin", "salesman", "shop"])
    @pytest.mark.parametrize("path", ["/admin", "/salesman/orders"])
    def test_unverified_accounts_never_pass(self, gateway_codec, role, path):
        decision = decide_route(path, token_for(gateway_codec, role, is_verified=False), gateway_codec)
        assert (decision.forward, decision.location) == (False, "/")

    def test_blocked_accounts_never_pass(self, gateway_codec):
        token = token_for(gateway_codec, "salesman", is_blocked=True)
        decision = decide_route("/salesman", token, gateway_codec)
        assert (decision.forward, decision.location) == (False, "/")

    @pytest.mark.parametrize("role", ["shop", "jeweller", ""])
    def test_roles_without_area_go_to_public_root(self, gateway_codec, role):
        decision = decide_route("/admin", token_for(gateway_codec, role), gateway_codec)
        assert (decision.forward, decision.location) == (False, "/")

    @pytest.mark.parametrize(
        "role, path, own_area",
        [
            ("salesman", "/admin", "/salesman"),
            ("salesman", "/admin/requests", "/salesman"),
            ("admin", "/salesman", "/admin"),
            ("admin", "/salesman/notifications", "/admin"),
        ],
    )
    def test_cross_area_redirects_to_own_area(self, gateway_codec, role, path, own_area):
        decision = decide_route(path, token_for(gateway_codec, role), gateway_codec)
        assert decision.forward is False
        assert decision.location == own_area

    @pytest.mark.parametrize("role, path", [("admin", "/admin/orders"), ("salesman", "/salesman")])
    def test_own_area_forwards_with_identity(self, gateway_codec, role, path):
        decision = decide_route(path, token_for(gateway_codec, role), gateway_codec)
        assert decision.forward is True
        assert decision.identity.role == role


class TestRoleAreas:
    def test_every_role_is_mapped(self):
        assert set(ROLE_AREAS) == set(Role)

    def test_exactly_two_restricted_areas(self):
        assert sorted(area for area in ROLE_AREAS.values() if area) == ["/admin", "/salesman"]

    def test_landing_for_verified_salesman(self, gateway_codec):
        assert landing_for(token_for(gateway_codec, "salesman"), gateway_codec) == "/salesman"

    def test_landing_for_unapproved_or_garbage(self, gateway_codec):
        assert landing_for(token_for(gateway_codec, "admin", is_verified=False), gateway_codec) is None
        assert landing_for("garbage", gateway_codec) is None
        assert landing_for(token_for(gateway_codec, "shop"), gateway_codec) is None


class TestGatewayHook:
    def test_admin_area_without_cookie(self, client):
        response = client.get("/admin")
        assert response.status_code == 302
        assert response.headers["Location"] == "/"

    def test_admin_reaches_admin_area(self, client, login_as, admin):
        login_as(admin)
        response = client.get("/admin")
        assert response.status_code == 200
        assert response.get_json()["area"] == "admin"

    def test_salesman_bounced_from_admin_area(self, client, login_as, salesman):
        login_as(salesman)
        response = client.get("/admin/orders")
        assert response.status_code == 302
        assert response.headers["Location"] == "/salesman"

    def test_salesman_home_counts_own_orders(self, client, login_as, salesman, make_order, make_account):
        other = make_account(role="salesman", request_status="approved")
        make_order(salesman["_id"])
        make_order(salesman["_id"], status="cad_completed")
        make_order(other["_id"])
        login_as(salesman)

        response = client.get("/salesman")
        assert response.status_code == 200
        counts = response.get_json()["ordersByStatus"]
        assert counts["confirmed"] == 1
        assert counts["cad_completed"] == 1

    def test_public_root_redirects_signed_in_admin(self, client, login_as, admin):
        login_as(admin)
        response = client.get("/")
        assert response.status_code == 302
        assert response.headers["Location"] == "/admin"

    def test_public_root_for_anonymous(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "login" in response.get_json()

    def test_admin_bounced_from_salesman_area(self, client, login_as, admin):
        login_as(admin)
        response = client.get("/salesman")
        assert response.status_code == 302
        assert response.headers["Location"] == "/admin"

    def test_foreign_signature_is_sent_to_public_root(self, client, gateway_codec):
        client.set_cookie("token", token_for(gateway_codec, "admin"))
        response = client.get("/admin")
        assert response.status_code == 302
        assert response.headers["Location"] == "/"
