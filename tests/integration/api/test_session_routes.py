"""
Integration tests for /api/session.
"""

import pytest


def open_session(client, email="user@example.com", password="test"):
    return client.post("/api/session/login", json={"email": email, "password": password})


class TestSessionLogin:

    def test_login(self, api):
        client, _, _ = api
        response = open_session(client)

        assert response.status_code == 200
        body = response.json()
        assert set(body) == {"accessToken", "accessTokenExpiresAt", "refreshToken", "refreshTokenExpiresAt"}

    @pytest.mark.parametrize("email,password", [
        ("user@example.com", "wrong"),
        ("ghost@example.com", "test"),
        ("disabled@example.com", "disabled"),
    ])
    def test_login_rejected(self, api, email, password):
        client, _, _ = api
        response = open_session(client, email, password)

        assert response.status_code == 400
        assert response.json() == {"code": "ESESSION_LOGIN", "message": "Invalid account or password"}

    def test_missing_field(self, api):
        client, _, _ = api
        response = client.post("/api/session/login", json={"email": "user@example.com"})

        assert response.status_code == 400
        assert response.json()["code"] == "EPARAM"


class TestSessionRefresh:

    def test_rotation(self, api):
        client, _, _ = api
        first = open_session(client).json()

        second = client.post("/api/session/refresh", json={"refreshToken": first["refreshToken"]})
        assert second.status_code == 200
        assert second.json()["refreshToken"] != first["refreshToken"]

        reused = client.post("/api/session/refresh", json={"refreshToken": first["refreshToken"]})
        assert reused.status_code == 401
        assert reused.json()["code"] == "EAUTH"

    @pytest.mark.parametrize("body", [{}, {"refreshToken": 123}, {"refreshToken": ""}])
    def test_refresh_token_must_be_string(self, api, body):
        client, _, _ = api
        response = client.post("/api/session/refresh", json=body)

        assert response.status_code == 400
        assert response.json() == {"code": "EPARAM", "message": "`refreshToken` must be a string"}


class TestSessionLogout:

    def test_logout_revokes_refresh_token(self, api):
        client, _, _ = api
        session = open_session(client).json()
        headers = {"Authorization": f"Bearer {session['accessToken']}"}

        response = client.post("/api/session/logout", json={"refreshToken": session["refreshToken"]}, headers=headers)
        assert response.status_code == 200
        assert response.json() == {}

        refreshed = client.post("/api/session/refresh", json={"refreshToken": session["refreshToken"]})
        assert refreshed.status_code == 401
        # The access token stays valid until it expires
        assert client.get("/api/user", headers=headers).status_code == 200

    def test_cannot_revoke_other_users_session(self, api):
        client, _, _ = api
        mine = open_session(client).json()
        theirs = open_session(client, "admin@example.com", "admin").json()

        client.post(
            "/api/session/logout",
            json={"refreshToken": theirs["refreshToken"]},
            headers={"Authorization": f"Bearer {mine['accessToken']}"},
        )
        refreshed = client.post("/api/session/refresh", json={"refreshToken": theirs["refreshToken"]})
        assert refreshed.status_code == 200

    def test_requires_bearer(self, api):
        client, _, _ = api
        session = open_session(client).json()
        response = client.post("/api/session/logout", json={"refreshToken": session["refreshToken"]})

        assert response.status_code == 401
        assert response.json()["code"] == "EAUTH"
