import types

import pytest

from app import create_app
from config import Settings
from generate_response import AffirmationGenerator


class FakeModel:
    """Stands in for genai.GenerativeModel; replies with canned text or raises."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate_content(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return types.SimpleNamespace(text=self.text)


MODEL_REPLY = (
    'Here you go: {"affirmations": ["I meet deadlines calmly"], '
    '"solutions": ["Plan the week on Monday"], '
    '"motivational": ["Progress beats perfection"]}'
)


@pytest.fixture
def fake_model():
    return FakeModel(MODEL_REPLY)


@pytest.fixture
def app(tmp_path, fake_model):
    settings = Settings(
        gemini_api_key="test-key",
        database_path=str(tmp_path / "test.db"),
        secret_key="test-secret",
    )
    app = create_app(settings, generator=AffirmationGenerator(fake_model))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def sign_up_and_in(client, email="maya@example.com", password="s3cret", full_name="Maya"):
    client.post("/api/auth/signup", json={"email": email, "password": password, "fullName": full_name})
    resp = client.post("/api/auth/signin", json={"email": email, "password": password})
    assert resp.status_code == 200
    return resp.get_json()["user"]


@pytest.fixture
def user(client):
    return sign_up_and_in(client)


@pytest.fixture
def category_id(client, user):
    categories = client.get("/api/problems/categories").get_json()["categories"]
    return next(c["id"] for c in categories if c["name"] == "Work Stress")


@pytest.fixture
def problem(client, category_id):
    resp = client.post("/api/problems", json={
        "category_id": category_id,
        "title": "Deadline anxiety",
        "description": "Too many deliverables due on Friday",
        "severity": 7,
    })
    assert resp.status_code == 201
    return resp.get_json()["problem"]
