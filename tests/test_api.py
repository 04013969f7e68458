import pytest
from fastapi.testclient import TestClient

from exambank.core.database import get_db
from exambank.main import app


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, user_id="teacher-1", roles=("teacher",)):
    r = client.post("/v1/auth/mock-login", json={"user_id": user_id, "roles": list(roles)})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def seed_bank(client, hdr, per_difficulty=10):
    r = client.post("/v1/author/subjects", headers=hdr, json={"name": "Biology"})
    assert r.status_code == 201
    subject_id = r.json()["subject_id"]
    for difficulty in ("easy", "medium", "hard"):
        for i in range(per_difficulty):
            r = client.post("/v1/author/questions", headers=hdr, json={
                "subject_id": subject_id, "text": f"{difficulty} {i}", "difficulty": difficulty,
                "alternatives": [{"text": "A"}, {"text": "B"}, {"text": "C"}], "correct_answer": 1,
            })
            assert r.status_code == 201
    return subject_id


def create_exam(client, hdr, subject_id, easy=5, medium=3, hard=2, variations=4):
    r = client.post("/v1/author/exams", headers=hdr, json={
        "title": "Final", "subject_ids": [subject_id], "total_questions": easy + medium + hard,
        "distribution": {"easy": easy, "medium": medium, "hard": hard}, "total_variations": variations,
    })
    assert r.status_code == 201, r.text
    return r.json()["exam_id"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


def test_role_required(client):
    hdr = login(client, roles=("student",))
    r = client.post("/v1/author/subjects", headers=hdr, json={"name": "History"})
    assert r.status_code == 403
    assert r.json()["error"]["type"] == "http_error"


def test_generate_score_and_report(client):
    hdr = login(client)
    subject_id = seed_bank(client, hdr)
    exam_id = create_exam(client, hdr, subject_id)

    r = client.get(f"/v1/exams/{exam_id}/availability", headers=hdr)
    assert r.json()["can_create"] is True

    r = client.post(f"/v1/exams/{exam_id}/variations", headers=hdr)
    assert r.status_code == 201
    body = r.json()
    assert body["count"] == 4
    variation = body["variations"][0]
    assert len(variation["questions_order"]) == 10
    assert variation["qr_payload"]["variationId"] == variation["variation_id"]

    url = f"/v1/corrections/exams/{exam_id}/variations/{variation['variation_id']}/results"
    r = client.post(url, headers=hdr, json={"answers": [1] * 10, "student_name": "Ana", "submission_key": "s-1"})
    assert r.status_code == 201
    assert r.json()["score"] == 10.0 and r.json()["is_passed"] is True

    r = client.post(url, headers=hdr, json={"answers": [1] * 7 + [0] * 3, "student_name": "Bo"})
    assert r.json()["score"] == 7.0

    r = client.post(url, headers=hdr, json={"answers": [1] * 9})
    assert r.status_code == 400
    assert r.json()["error"] == {
        "message": "Expected 10 answers, got 9", "type": "answer_count_mismatch", "expected": 10, "received": 9,
    }

    r = client.get(f"/v1/exams/{exam_id}/statistics", headers=hdr)
    stats = r.json()
    assert stats["overall"]["count"] == 2
    assert stats["overall"]["average_score"] == 8.5
    assert stats["per_variation"][0]["variation_letter"] == "A"
    assert sum(b["count"] for b in stats["score_distribution"]) == 2

    r = client.get(f"/v1/corrections/exams/{exam_id}/results", headers=hdr, params={"passed": True})
    assert r.json()["count"] == 2

    result_id = r.json()["results"][0]["id"]
    r = client.post(f"/v1/corrections/results/{result_id}/review", headers=hdr, json={"feedback": "ok"})
    assert r.status_code == 200 and r.json()["is_reviewed"] is True


def test_shortfall_is_structured(client):
    hdr = login(client)
    subject_id = seed_bank(client, hdr, per_difficulty=2)
    exam_id = create_exam(client, hdr, subject_id, easy=5, medium=0, hard=0, variations=1)

    r = client.post(f"/v1/exams/{exam_id}/variations", headers=hdr)
    assert r.status_code == 400
    error = r.json()["error"]
    assert error["type"] == "insufficient_questions"
    assert error["missing"] == {"easy": 3}
    assert error["suggestions"]


def test_invalid_exam_configuration(client):
    hdr = login(client)
    subject_id = seed_bank(client, hdr, per_difficulty=1)
    r = client.post("/v1/author/exams", headers=hdr, json={
        "title": "Bad", "subject_ids": [subject_id], "total_questions": 4,
        "distribution": {"easy": 1, "medium": 1, "hard": 1}, "total_variations": 51,
    })
    assert r.status_code == 400
    problems = r.json()["error"]["problems"]
    assert "Questions distribution must sum to total questions" in problems
    assert any("totalVariations" in p for p in problems)


def test_publish_lifecycle(client):
    hdr = login(client)
    subject_id = seed_bank(client, hdr, per_difficulty=4)
    exam_id = create_exam(client, hdr, subject_id, easy=2, medium=1, hard=1, variations=2)

    r = client.post(f"/v1/exams/{exam_id}/publish", headers=hdr)
    assert r.status_code == 200 and r.json()["status"] == "published"

    r = client.post(f"/v1/exams/{exam_id}/variations", headers=hdr)
    assert r.status_code == 400
    assert r.json()["error"]["type"] == "validation_error"

    r = client.post(f"/v1/exams/{exam_id}/unpublish", headers=hdr)
    assert r.json()["status"] == "unpublished"


def test_other_teachers_exam_is_forbidden(client):
    hdr = login(client)
    subject_id = seed_bank(client, hdr, per_difficulty=1)
    exam_id = create_exam(client, hdr, subject_id, easy=1, medium=0, hard=0, variations=1)

    other = login(client, user_id="teacher-2")
    assert client.get(f"/v1/exams/{exam_id}/statistics", headers=other).status_code == 403
    assert client.get("/v1/exams/9999/variations", headers=other).status_code == 404


def test_submission_key_does_not_cross_exams(client):
    owner = login(client)
    exam_id = create_exam(client, owner, seed_bank(client, owner, per_difficulty=1), easy=1, medium=1, hard=1, variations=1)
    variation_id = client.post(f"/v1/exams/{exam_id}/variations", headers=owner).json()["variations"][0]["variation_id"]
    r = client.post(f"/v1/corrections/exams/{exam_id}/variations/{variation_id}/results", headers=owner,
                    json={"answers": [1, 1, 1], "student_name": "Ana", "submission_key": "sheet-7"})
    owner_result = r.json()

    other = login(client, user_id="teacher-2")
    other_exam = create_exam(client, other, seed_bank(client, other, per_difficulty=1), easy=1, medium=1, hard=1, variations=1)
    other_variation = client.post(f"/v1/exams/{other_exam}/variations", headers=other).json()["variations"][0]["variation_id"]
    r = client.post(f"/v1/corrections/exams/{other_exam}/variations/{other_variation}/results", headers=other,
                    json={"answers": [0, 0, 0], "student_name": "Bo", "submission_key": "sheet-7"})
    assert r.status_code == 201
    body = r.json()
    assert body["id"] != owner_result["id"]
    assert body["exam_id"] == other_exam
    assert body["student_name"] == "Bo"
    assert body["score"] == 0.0


def test_export_results(client):
    hdr = login(client)
    exam_id = create_exam(client, hdr, seed_bank(client, hdr, per_difficulty=2), easy=1, medium=1, hard=1, variations=2)
    variations = client.post(f"/v1/exams/{exam_id}/variations", headers=hdr).json()["variations"]
    for v, name in zip(variations, ("Ana", "Bo")):
        url = f"/v1/corrections/exams/{exam_id}/variations/{v['variation_id']}/results"
        assert client.post(url, headers=hdr, json={"answers": [1, 1, 1], "student_name": name}).status_code == 201

    r = client.get(f"/v1/corrections/exams/{exam_id}/results/export", headers=hdr)
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert body["exported_at"]
    by_name = {row["student_name"]: row for row in body["results"]}
    assert by_name["Ana"]["variation_letter"] == "A"
    assert by_name["Bo"]["variation_letter"] == "B"
    assert by_name["Bo"]["variation_number"] == 2
    assert by_name["Ana"]["score"] == 10.0

    other = login(client, user_id="teacher-2")
    assert client.get(f"/v1/corrections/exams/{exam_id}/results/export", headers=other).status_code == 403


def test_duplicate_and_archive(client):
    hdr = login(client)
    exam_id = create_exam(client, hdr, seed_bank(client, hdr, per_difficulty=2), easy=1, medium=1, hard=1, variations=2)
    assert client.post(f"/v1/exams/{exam_id}/publish", headers=hdr).status_code == 200

    r = client.post(f"/v1/exams/{exam_id}/duplicate", headers=hdr)
    assert r.status_code == 201
    copy = r.json()
    assert copy["exam_id"] != exam_id
    assert copy["title"] == "Final (Copy)"
    assert copy["status"] == "draft"
    assert copy["distribution"] == {"easy": 1, "medium": 1, "hard": 1}
    assert client.get(f"/v1/exams/{copy['exam_id']}/variations", headers=hdr).json()["variations"] == []

    r = client.post(f"/v1/exams/{exam_id}/duplicate", headers=hdr, json={"title": "Retake"})
    assert r.json()["title"] == "Retake"

    assert client.post(f"/v1/exams/{exam_id}/archive", headers=hdr).json()["status"] == "archived"
    r = client.post(f"/v1/exams/{exam_id}/archive", headers=hdr)
    assert r.status_code == 400
    r = client.post(f"/v1/exams/{exam_id}/variations", headers=hdr)
    assert r.status_code == 400
    assert r.json()["error"]["type"] == "validation_error"
