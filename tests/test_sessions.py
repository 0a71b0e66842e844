from fastapi.testclient import TestClient

from conftest import bearer, signin, use_cookies
from virtualqueue.core.tokens import token_codec


def _signin_twice(client: TestClient):
    """Open two sessions for the same user; returns their access tokens."""
    first = signin(client, headers={"User-Agent": "laptop"}).json()["data"]["accessToken"]
    second = signin(client, headers={"User-Agent": "phone"}).json()["data"]["accessToken"]
    use_cookies(client)
    return first, second


def test_list_sessions_marks_current(client: TestClient, create_user):
    create_user()
    first, second = _signin_twice(client)

    response = client.get("/auth/sessions", headers=bearer(second))

    assert response.status_code == 200
    sessions = response.json()["data"]["sessions"]
    assert len(sessions) == 2
    current = [item for item in sessions if item["current"]]
    assert len(current) == 1
    assert current[0]["id"] == token_codec.verify(second)["jti"]
    assert current[0]["userAgent"] == "phone"
    assert {"id", "userAgent", "ip", "createdAt", "lastActiveAt", "expiresAt", "current"} <= set(sessions[0])
    assert "tokenHash" not in sessions[0]


def test_list_sessions_only_shows_own_sessions(client: TestClient, create_user):
    create_user()
    create_user(email="b@x.com")
    signin(client, email="b@x.com")
    access_token = signin(client).json()["data"]["accessToken"]
    use_cookies(client)

    sessions = client.get("/auth/sessions", headers=bearer(access_token)).json()["data"]["sessions"]

    assert len(sessions) == 1


def test_terminate_other_session(client: TestClient, create_user):
    create_user()
    first, second = _signin_twice(client)
    first_id = token_codec.verify(first)["jti"]

    response = client.delete(f"/auth/sessions/{first_id}", headers=bearer(second))

    assert response.status_code == 200
    assert response.json()["message"] == "Session terminated successfully"

    response = client.get("/auth/me", headers=bearer(first))
    assert response.status_code == 401
    assert response.json()["message"] == "Session has been terminated"

    sessions = client.get("/auth/sessions", headers=bearer(second)).json()["data"]["sessions"]
    assert [item["id"] for item in sessions] == [token_codec.verify(second)["jti"]]


def test_terminate_session_twice_is_harmless(client: TestClient, create_user):
    create_user()
    first, second = _signin_twice(client)
    first_id = token_codec.verify(first)["jti"]

    assert client.delete(f"/auth/sessions/{first_id}", headers=bearer(second)).status_code == 200
    assert client.delete(f"/auth/sessions/{first_id}", headers=bearer(second)).status_code == 200


def test_terminate_unknown_session(client: TestClient, create_user):
    create_user()
    access_token = signin(client).json()["data"]["accessToken"]
    use_cookies(client)

    response = client.delete("/auth/sessions/" + "f" * 32, headers=bearer(access_token))

    assert response.status_code == 404
    assert response.json()["message"] == "Session not found."


def test_cannot_terminate_another_users_session(client: TestClient, create_user):
    create_user()
    create_user(email="b@x.com")
    victim = signin(client, email="b@x.com").json()["data"]["accessToken"]
    attacker = signin(client).json()["data"]["accessToken"]
    use_cookies(client)

    response = client.delete(f"/auth/sessions/{token_codec.verify(victim)['jti']}", headers=bearer(attacker))

    assert response.status_code == 404
    assert client.get("/auth/me", headers=bearer(victim)).status_code == 200


def test_terminate_all_except_current(client: TestClient, create_user):
    create_user()
    first, second = _signin_twice(client)

    response = client.delete("/auth/sessions", params={"exceptCurrent": "true"}, headers=bearer(second))

    assert response.status_code == 200
    assert response.json()["data"] == {"terminated": 1}
    assert client.get("/auth/me", headers=bearer(first)).status_code == 401
    assert client.get("/auth/me", headers=bearer(second)).status_code == 200


def test_terminate_all_sessions(client: TestClient, create_user):
    create_user()
    first, second = _signin_twice(client)

    response = client.delete("/auth/sessions", headers=bearer(second))

    assert response.status_code == 200
    assert response.json()["data"] == {"terminated": 2}
    assert client.get("/auth/me", headers=bearer(first)).status_code == 401
    assert client.get("/auth/me", headers=bearer(second)).status_code == 401
