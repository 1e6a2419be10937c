"""
Integration tests for /api/client.

Author: OAuthKeeper Team
Date: 2026-02-13
"""

import asyncio

import pytest

from conftest import REDIRECT_1, auth_headers


NEW_CLIENT = {
    "redirectUris": [REDIRECT_1],
    "scopes": ["r"],
    "grants": ["authorization_code", "refresh_token"],
    "name": "Registered",
}


class TestRegisterClient:

    def test_dev_registers_own_client(self, api):
        client, store, ids = api
        body = dict(NEW_CLIENT, userId=ids["dev2"])
        response = client.post("/api/client", json=body, headers=auth_headers(client, "dev1"))
        assert response.status_code == 200

        record = asyncio.run(store.get_client(response.json()["clientId"]))
        assert record.user_id == ids["dev1"]
        assert record.client_secret
        assert record.scopes == ["r"]

    def test_admin_assigns_owner(self, api):
        client, store, ids = api
        body = dict(NEW_CLIENT, userId=ids["dev2"], scopes=None)
        response = client.post("/api/client", json=body, headers=auth_headers(client, "admin"))

        record = asyncio.run(store.get_client(response.json()["clientId"]))
        assert record.user_id == ids["dev2"]
        assert record.scopes is None

    def test_dev_cannot_register_unrestricted(self, api):
        client, _, _ = api
        response = client.post("/api/client", json=dict(NEW_CLIENT, scopes=None), headers=auth_headers(client, "dev1"))
        assert response.status_code == 403
        assert response.json()["code"] == "EPERM"

    @pytest.mark.parametrize("change", [
        {"grants": ["implicit"]},
        {"grants": ["password", "password"]},
        {"redirectUris": [REDIRECT_1, REDIRECT_1]},
    ])
    def test_invalid_body(self, api, change):
        client, _, _ = api
        response = client.post("/api/client", json=dict(NEW_CLIENT, **change), headers=auth_headers(client, "dev1"))
        assert response.status_code == 400
        assert response.json()["code"] == "EPARAM"

    def test_scopes_key_required(self, api):
        client, _, _ = api
        body = {k: v for k, v in NEW_CLIENT.items() if k != "scopes"}
        response = client.post("/api/client", json=body, headers=auth_headers(client, "dev1"))
        assert response.status_code == 400

    def test_plain_user_forbidden(self, api):
        client, _, _ = api
        response = client.post("/api/client", json=NEW_CLIENT, headers=auth_headers(client, "user"))
        assert response.status_code == 403

    def test_registered_client_can_get_tokens(self, api):
        """A client registered over the API works at the token endpoint."""
        client, store, _ = api
        body = dict(NEW_CLIENT, grants=["client_credentials"])
        client_id = client.post("/api/client", json=body, headers=auth_headers(client, "dev1")).json()["clientId"]
        secret = asyncio.run(store.get_client(client_id)).client_secret

        response = client.post("/oauth2/token", data={
            "grant_type": "client_credentials", "client_id": client_id, "client_secret": secret, "scope": "r",
        })
        assert response.status_code == 200


class TestReadClients:
    """Ownership filtering on count, list and get."""

    def test_dev_sees_only_own_clients(self, api):
        client, _, ids = api
        headers = auth_headers(client, "dev1")

        assert client.get("/api/client/count", params={"user": ids["dev2"]}, headers=headers).json() == {"count": 1}
        clients = client.get("/api/client/list", headers=headers).json()
        assert [c["id"] for c in clients] == ["clientAll"]
        assert "userId" not in clients[0]
        assert clients[0]["clientSecret"] == "2"

    def test_admin_sees_all_with_owner(self, api):
        client, _, ids = api
        headers = auth_headers(client, "admin")

        assert client.get("/api/client/count", headers=headers).json() == {"count": 2}
        owned = client.get("/api/client/list", params={"user": ids["dev2"]}, headers=headers).json()
        assert [c["id"] for c in owned] == ["clientNoAuthCode"]
        assert owned[0]["userId"] == ids["dev2"]

    def test_list_paging(self, api):
        client, _, _ = api
        headers = auth_headers(client, "admin")
        page = client.get("/api/client/list", params={"num": 1, "p": 2}, headers=headers).json()
        assert [c["id"] for c in page] == ["clientNoAuthCode"]

        bad = client.get("/api/client/list", params={"num": "x"}, headers=headers)
        assert bad.status_code == 400

    def test_get_own_client(self, api):
        client, _, _ = api
        body = client.get("/api/client/clientAll", headers=auth_headers(client, "dev1")).json()
        assert body["redirectUris"] == ["http://localhost:3000/test1", "http://localhost:3000/test2"]
        assert body["grants"] == ["authorization_code", "password", "client_credentials", "refresh_token"]

    def test_other_devs_client_is_not_found(self, api):
        client, _, _ = api
        response = client.get("/api/client/clientNoAuthCode", headers=auth_headers(client, "dev1"))
        assert response.status_code == 404
        assert response.json()["code"] == "ECLIENT_NOT_FOUND"

    def test_manager_forbidden(self, api):
        client, _, _ = api
        response = client.get("/api/client/list", headers=auth_headers(client, "manager"))
        assert response.status_code == 403


class TestChangeClients:

    def test_update_own_client(self, api):
        client, store, _ = api
        response = client.put(
            "/api/client/clientAll",
            json={"name": "Renamed", "redirectUris": [REDIRECT_1]},
            headers=auth_headers(client, "dev1"),
        )
        assert response.status_code == 200

        record = asyncio.run(store.get_client("clientAll"))
        assert record.name == "Renamed"
        assert record.redirect_uris == [REDIRECT_1]

    def test_update_other_devs_client(self, api):
        client, _, _ = api
        response = client.put("/api/client/clientNoAuthCode", json={"name": "x"}, headers=auth_headers(client, "dev1"))
        assert response.status_code == 404

    def test_grants_are_not_updatable(self, api):
        client, _, _ = api
        response = client.put(
            "/api/client/clientAll", json={"grants": ["password"]}, headers=auth_headers(client, "dev1"),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "EPARAM"

    def test_only_admin_removes_scope_restriction(self, api):
        client, store, _ = api
        denied = client.put("/api/client/clientAll", json={"scopes": None}, headers=auth_headers(client, "dev1"))
        assert denied.status_code == 403

        allowed = client.put("/api/client/clientAll", json={"scopes": None}, headers=auth_headers(client, "admin"))
        assert allowed.status_code == 200
        assert asyncio.run(store.get_client("clientAll")).scopes is None

    def test_delete_client(self, api):
        client, store, _ = api
        headers = auth_headers(client, "dev1")

        assert client.delete("/api/client/clientAll", headers=headers).status_code == 200
        assert asyncio.run(store.get_client("clientAll")) is None
        assert client.delete("/api/client/clientAll", headers=headers).status_code == 404

    def test_delete_clients_of_user(self, api):
        client, store, ids = api
        headers = auth_headers(client, "admin")

        assert client.delete(f"/api/client/user/{ids['dev2']}", headers=headers).status_code == 200
        assert asyncio.run(store.get_client("clientNoAuthCode")) is None
        assert asyncio.run(store.get_client("clientAll")) is not None

        missing = client.delete("/api/client/user/nobody", headers=headers)
        assert missing.status_code == 404
        assert missing.json()["code"] == "EUSER_NOT_FOUND"

    def test_dev_cannot_delete_clients_of_user(self, api):
        client, _, ids = api
        response = client.delete(f"/api/client/user/{ids['dev1']}", headers=auth_headers(client, "dev1"))
        assert response.status_code == 403
