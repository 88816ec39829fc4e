"""
Unit tests for Rights main service.
"""

import pytest
from fastapi.testclient import TestClient

from service_rights.app.main import RightsService, create_app


def grant_body(right="renameAccount", grantee="da@example.com", target="user@example.com",
               target_type="account", grantee_type="usr", **modifiers):
    return {
        "target": {"type": target_type, "by": "name", "value": target},
        "grantee": {"type": grantee_type, "by": "name", "value": grantee},
        "right": dict(name=right, **modifiers),
    }


class TestRightsService:
    """Test cases for RightsService."""

    @pytest.fixture
    def app(self, command):
        """Create app that accepts trusted system calls."""
        return create_app(command, allow_system_caller=True)

    @pytest.fixture
    def client(self, app):
        """Create test client."""
        return TestClient(app)

    @pytest.fixture
    def strict_client(self, command):
        """Client for an app that requires an authenticated account."""
        return TestClient(create_app(command))

    def test_service_defaults(self):
        service = RightsService()

        assert service.service_name == "rights"
        assert service.port == 8013
        assert service.command.get_right("renameAccount").name == "renameAccount"

    def test_service_seeded_from_directory_file(self, tmp_path):
        path = tmp_path / "directory.yaml"
        path.write_text(
            "domains:\n"
            "  - {name: example.com}\n"
            "accounts:\n"
            "  - {name: da@example.com, id: acct-da, delegatedAdmin: true}\n"
            "  - {name: user@example.com}\n"
        )
        client = TestClient(create_app(directory_file=str(path), allow_system_caller=True))

        response = client.post("/rights/grant", json=grant_body())

        assert response.status_code == 200
        assert response.json()["id"] == "acct-da"

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "rights"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"catalog": "ok"}

    def test_request_id_echoed(self, client):
        response = client.get("/", headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"

    def test_list_rights(self, client):
        response = client.get("/rights", params={"targetType": "server"})

        assert response.status_code == 200
        names = [r["name"] for r in response.json()["rights"]]
        assert "flushCache" in names
        assert "renameAccount" not in names

    def test_get_right(self, client):
        response = client.get("/rights/modifyAccount", params={"expandAllAttrs": "true"})

        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "setAttrs"
        assert data["attrs"]["all"] is True
        assert {"n": "zimbraMailQuota"} in data["attrs"]["a"]

    def test_get_unknown_right(self, client):
        response = client.get("/rights/becomeRoot")

        assert response.status_code == 404
        assert response.json()["code"] == "NO_SUCH_RIGHT"

    def test_invalid_target_type(self, client):
        response = client.get("/rights", params={"targetType": "mailbox"})
        assert response.status_code == 400

    def test_grant_and_list_grants(self, client):
        response = client.post("/rights/grant", json=grant_body(canDelegate=True))

        assert response.status_code == 200
        assert response.json() == {
            "type": "usr",
            "id": "acct-da",
            "name": "da@example.com",
            "right": "renameAccount",
            "deny": False,
            "canDelegate": True,
        }

        response = client.get(
            "/rights/grants", params={"targetType": "account", "target": "user@example.com"}
        )
        assert response.status_code == 200
        assert [g["right"] for g in response.json()["grant"]] == ["renameAccount"]

    def test_grant_requires_authenticated_account(self, strict_client):
        response = strict_client.post("/rights/grant", json=grant_body())

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_ERROR"

    def test_grant_by_unknown_account(self, client):
        response = client.post("/rights/grant", json=grant_body(), headers={"X-Authed-Account": "acct-gone"})
        assert response.status_code == 401

    def test_grant_without_delegation(self, client):
        response = client.post("/rights/grant", json=grant_body(), headers={"X-Authed-Account": "acct-bob"})

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "PERM_DENIED"
        assert data["details"]["check"] == "delegation"

    def test_grant_on_wrong_target_type(self, client):
        response = client.post("/rights/grant", json=grant_body(right="createAccount"))

        assert response.status_code == 400
        assert response.json()["details"]["check"] == "target_type"

    def test_grant_deny_and_can_delegate(self, client):
        response = client.post("/rights/grant", json=grant_body(deny=True, canDelegate=True))
        assert response.status_code == 400

    def test_revoke(self, client):
        client.post("/rights/grant", json=grant_body(deny=True))

        response = client.post("/rights/revoke", json=grant_body(deny=True))

        assert response.status_code == 200
        assert [g["right"] for g in response.json()["revoked"]] == ["renameAccount"]

        response = client.post("/rights/revoke", json=grant_body(deny=True))
        assert response.status_code == 404
        assert response.json()["code"] == "NO_SUCH_GRANT"

    def test_check_right(self, client):
        client.post("/rights/grant", json=grant_body(target="example.com", target_type="domain"))

        response = client.post("/rights/check", json={
            "target": {"type": "account", "value": "user@example.com"},
            "grantee": {"value": "da@example.com"},
            "right": "renameAccount",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["allow"] is True
        assert data["via"]["targetType"] == "domain"

    def test_check_right_denied(self, client):
        client.post("/rights/grant", json=grant_body(target="example.com", target_type="domain"))
        client.post("/rights/grant", json=grant_body(deny=True))

        response = client.post("/rights/check", json={
            "target": {"type": "account", "value": "user@example.com"},
            "grantee": {"value": "da@example.com"},
            "right": "renameAccount",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["allow"] is False
        assert data["via"]["deny"] is True
        assert data["via"]["target"] == "user@example.com"

    def test_effective_rights(self, client):
        client.post("/rights/grant", json=grant_body(right="setAccountQuota"))

        response = client.post("/rights/effective", json={
            "target": {"type": "account", "value": "user@example.com"},
            "grantee": {"value": "da@example.com"},
        })

        assert response.status_code == 200
        target = response.json()["target"]
        assert target["id"] == "acct-user"
        assert target["setAttrs"]["a"] == [{"n": "zimbraMailQuota"}]

    def test_all_effective_rights(self, client):
        client.post("/rights/grant", json=grant_body(target="example.com", target_type="domain"))

        response = client.post("/rights/effective/all", json={
            "grantee": {"type": "usr", "by": "id", "value": "acct-da"},
        })

        assert response.status_code == 200
        by_type = {t["type"]: t for t in response.json()["target"]}
        assert by_type["account"]["inDomains"][0]["entry"] == ["example.com"]

    def test_create_object_attrs(self, client):
        client.post("/rights/grant", json=grant_body(right="modifyAccount", target="example.com",
                                                     target_type="domain"))

        response = client.post("/rights/create-object-attrs", json={
            "targetType": "account",
            "domain": {"value": "example.com"},
            "cos": {"value": "default"},
            "grantee": {"value": "da@example.com"},
        })

        assert response.status_code == 200
        set_attrs = response.json()["setAttrs"]
        assert set_attrs["all"] is True
        quota = [a for a in set_attrs["a"] if a["n"] == "zimbraMailQuota"]
        assert quota == [{"n": "zimbraMailQuota", "default": ["1024"]}]

    def test_metrics(self, client):
        client.post("/rights/grant", json=grant_body())
        client.post("/rights/grant", json=grant_body(right="createAccount"))

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert 'rights_mutations_total{operation="grant",outcome="success"} 1.0' in body
        assert 'rights_mutations_total{operation="grant",outcome="INVALID_REQUEST"} 1.0' in body
