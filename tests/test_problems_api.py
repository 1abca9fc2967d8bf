from conftest import sign_up_and_in
from generate_response import FALLBACK_AFFIRMATIONS


def test_categories_are_seeded_and_sorted(client, user):
    categories = client.get("/api/problems/categories").get_json()["categories"]
    names = [c["name"] for c in categories]
    assert "Work Stress" in names
    assert names == sorted(names)


def test_create_problem_stores_model_affirmations(client, category_id, fake_model):
    resp = client.post("/api/problems", json={
        "category_id": category_id,
        "title": "Deadline anxiety",
        "description": "Too many deliverables due on Friday",
        "severity": 7,
    })

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["fallback"] is False
    assert body["problem"]["problem_categories"]["name"] == "Work Stress"
    assert body["affirmations"] == [
        {"content": "I meet deadlines calmly", "type": "positive"},
        {"content": "Plan the week on Monday", "type": "solution"},
        {"content": "Progress beats perfection", "type": "motivational"},
    ]
    assert "Category: Work Stress" in fake_model.prompts[0]

    stored = client.get(f"/api/problems/{body['problem']['id']}").get_json()["problem"]
    assert len(stored["affirmations"]) == 3


def test_create_problem_survives_model_failure(client, category_id, fake_model):
    fake_model.error = RuntimeError("503 Service Unavailable")

    resp = client.post("/api/problems", json={
        "category_id": category_id, "title": "t", "description": "d",
    })

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["fallback"] is True
    assert body["problem"]["severity"] == 5
    contents = [a["content"] for a in body["affirmations"]]
    expected = (
        FALLBACK_AFFIRMATIONS["affirmations"]
        + FALLBACK_AFFIRMATIONS["solutions"]
        + FALLBACK_AFFIRMATIONS["motivational"]
    )
    assert contents == expected


def test_create_problem_validation(client, category_id):
    resp = client.post("/api/problems", json={"title": "t", "description": "d"})
    assert resp.status_code == 400

    resp = client.post("/api/problems", json={
        "category_id": category_id, "title": "t", "description": "d", "severity": 11,
    })
    assert resp.status_code == 400

    resp = client.post("/api/problems", json={
        "category_id": 9999, "title": "t", "description": "d",
    })
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Unknown category"


def test_list_problems_with_filter_and_paging(client, category_id):
    for i in range(3):
        client.post("/api/problems", json={
            "category_id": category_id, "title": f"problem {i}", "description": "d",
        })

    problems = client.get("/api/problems").get_json()["problems"]
    assert [p["title"] for p in problems] == ["problem 2", "problem 1", "problem 0"]
    assert all(len(p["affirmations"]) == 3 for p in problems)

    page = client.get("/api/problems?limit=1&offset=1").get_json()["problems"]
    assert [p["title"] for p in page] == ["problem 1"]

    other = client.get(f"/api/problems?category_id={category_id + 1}").get_json()["problems"]
    assert other == []


def test_update_problem_changes_only_supplied_fields(client, problem):
    resp = client.put(f"/api/problems/{problem['id']}", json={"severity": 3, "is_public": True})

    assert resp.status_code == 200
    updated = resp.get_json()["problem"]
    assert updated["severity"] == 3
    assert updated["is_public"] is True
    assert updated["title"] == "Deadline anxiety"


def test_delete_problem(client, problem):
    resp = client.delete(f"/api/problems/{problem['id']}")
    assert resp.status_code == 200
    assert client.get(f"/api/problems/{problem['id']}").status_code == 404
    assert client.delete(f"/api/problems/{problem['id']}").status_code == 404


def test_problems_are_private(client, problem):
    client.post("/api/auth/signout")
    sign_up_and_in(client, email="other@example.com")

    assert client.get(f"/api/problems/{problem['id']}").status_code == 404
    assert client.put(f"/api/problems/{problem['id']}", json={"title": "mine"}).status_code == 404
    assert client.delete(f"/api/problems/{problem['id']}").status_code == 404
    assert client.get("/api/problems").get_json()["problems"] == []


def test_is_public_must_be_boolean(client, category_id, problem):
    resp = client.post("/api/problems", json={
        "category_id": category_id, "title": "t", "description": "d", "is_public": "false",
    })
    assert resp.status_code == 400

    resp = client.put(f"/api/problems/{problem['id']}", json={"is_public": "false"})
    assert resp.status_code == 400
    assert client.get(f"/api/problems/{problem['id']}").get_json()["problem"]["is_public"] is False
