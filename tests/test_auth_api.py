from conftest import sign_up_and_in


def test_signup_requires_email_and_password(client):
    resp = client.post("/api/auth/signup", json={"email": "a@example.com"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Email and password are required"


def test_signup_then_signin(client):
    resp = client.post("/api/auth/signup", json={
        "email": "Maya@Example.com", "password": "s3cret", "fullName": "Maya",
    })
    assert resp.status_code == 201
    assert resp.get_json()["user"]["email"] == "maya@example.com"

    resp = client.post("/api/auth/signin", json={"email": "maya@example.com", "password": "s3cret"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "Sign in successful"
    assert body["user"]["full_name"] == "Maya"


def test_duplicate_signup_rejected(client):
    client.post("/api/auth/signup", json={"email": "a@example.com", "password": "x"})
    resp = client.post("/api/auth/signup", json={"email": "a@example.com", "password": "y"})
    assert resp.status_code == 400


def test_signin_with_wrong_password(client):
    client.post("/api/auth/signup", json={"email": "a@example.com", "password": "right"})
    resp = client.post("/api/auth/signin", json={"email": "a@example.com", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "Invalid credentials"


def test_protected_routes_need_login(client):
    assert client.get("/api/auth/profile").status_code == 401
    assert client.get("/api/problems").status_code == 401
    assert client.get("/api/sessions/stats").status_code == 401
    assert client.get("/api/affirmations/favorites").status_code == 401


def test_profile_roundtrip(client):
    sign_up_and_in(client)

    profile = client.get("/api/auth/profile").get_json()["user"]
    assert profile["email"] == "maya@example.com"
    assert "password" not in profile

    resp = client.put("/api/auth/profile", json={"avatar_url": "https://img.example.com/m.png"})
    assert resp.status_code == 200
    user = resp.get_json()["user"]
    assert user["avatar_url"] == "https://img.example.com/m.png"
    assert user["full_name"] == "Maya"


def test_signout_clears_session(client):
    sign_up_and_in(client)
    assert client.post("/api/auth/signout").status_code == 200
    assert client.get("/api/auth/profile").status_code == 401


def test_signup_rejects_non_string_credentials(client):
    resp = client.post("/api/auth/signup", json={"email": 123, "password": "p"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Email and password are required"

    resp = client.post("/api/auth/signup", json={"email": "a@example.com", "password": ["p"]})
    assert resp.status_code == 400


def test_signin_rejects_non_string_credentials(client):
    resp = client.post("/api/auth/signin", json={"email": {"x": 1}, "password": "p"})
    assert resp.status_code == 400


def test_profile_fields_must_be_text(client):
    sign_up_and_in(client)

    resp = client.put("/api/auth/profile", json={"full_name": ["x"]})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "full_name must be a string"
    assert client.put("/api/auth/profile", json={"avatar_url": 5}).status_code == 400
    assert client.get("/api/auth/profile").get_json()["user"]["full_name"] == "Maya"
