from types import SimpleNamespace

import pytest

from vitalai.config import settings
from vitalai.services.tuning_service import DEFAULT_PARAMETERS

USER = {"X-User-Id": "user-1"}


def upload(client, name, content, headers=USER, content_type="text/plain"):
    return client.post("/api/documents", files={"file": (name, content, content_type)}, headers=headers)


def test_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "vitalai"}


def test_submit_and_list_feedback(client):
    response = client.post(
        "/api/feedback",
        json={
            "response_id": "resp-1",
            "response_type": "fitness-plan",
            "rating": "positive",
            "comment": "Loved the warm-up",
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["feedback_id"].startswith("feedback-")

    listing = client.get("/api/feedback").json()
    assert listing["count"] == 1
    assert listing["feedback"][0]["response_id"] == "resp-1"
    assert listing["feedback"][0]["id"] == body["feedback_id"]


def test_comment_only_feedback_is_accepted(client):
    response = client.post(
        "/api/feedback",
        json={"response_id": "resp-2", "response_type": "default", "comment": "Too long"},
    )
    assert response.status_code == 200
    assert client.get("/api/feedback").json()["feedback"][0]["rating"] is None


def test_feedback_with_blank_fields_is_rejected(client):
    response = client.post("/api/feedback", json={"response_id": "  ", "response_type": "default"})
    assert response.status_code == 400


def test_feedback_with_unknown_rating_is_rejected(client):
    response = client.post(
        "/api/feedback",
        json={"response_id": "resp-1", "response_type": "default", "rating": "meh"},
    )
    assert response.status_code == 422


def test_unknown_response_type_gets_default_parameters(client):
    unknown = client.get("/api/parameters/sleep-coach").json()
    default = client.get("/api/parameters/default").json()

    assert unknown["response_type"] == "sleep-coach"
    assert unknown["parameters"] == default["parameters"]
    assert default["parameters"] == DEFAULT_PARAMETERS["default"].to_dict()


def test_all_parameters_lists_every_category(client):
    parameters = client.get("/api/parameters").json()
    assert set(parameters) == set(DEFAULT_PARAMETERS)


def test_analyze_applies_negative_feedback(client):
    for i in range(5):
        client.post(
            "/api/feedback",
            json={"response_id": f"resp-{i}", "response_type": "indian-cuisine", "rating": "negative"},
        )

    parameters = client.post("/api/parameters/analyze").json()

    assert parameters["indian-cuisine"]["temperature"] == pytest.approx(0.5)
    assert parameters["indian-cuisine"]["top_p"] == pytest.approx(0.85)
    assert client.get("/api/parameters/indian-cuisine").json()["parameters"]["temperature"] == pytest.approx(0.5)


def test_generate_without_api_key_is_unavailable(client):
    response = client.post("/api/generate", json={"prompt": "Plan my week", "response_type": "fitness-plan"})
    assert response.status_code == 503


def test_generate_rejects_empty_prompt(client):
    response = client.post("/api/generate", json={"prompt": "   "})
    assert response.status_code == 400


def test_generate_uses_tuned_parameters(client):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        message = SimpleNamespace(content="Try a moong dal khichdi.")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client.app.state.generation_service.client = fake

    response = client.post("/api/generate", json={"prompt": "Light dinner idea", "response_type": "indian-cuisine"})

    assert response.status_code == 200
    body = response.json()
    assert body["text"] == "Try a moong dal khichdi."
    assert body["response_id"]
    assert body["parameters"] == DEFAULT_PARAMETERS["indian-cuisine"].to_dict()
    assert calls[0]["temperature"] == DEFAULT_PARAMETERS["indian-cuisine"].temperature
    assert calls[0]["max_tokens"] == DEFAULT_PARAMETERS["indian-cuisine"].max_output_tokens


def test_upload_requires_user(client):
    response = upload(client, "notes.txt", b"hello", headers={})
    assert response.status_code == 401


def test_upload_rejects_unusable_filename(client):
    response = upload(client, "???", b"hello")
    assert response.status_code == 400


def test_upload_rejects_oversized_files(client, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 4)
    response = upload(client, "notes.txt", b"more than four bytes")
    assert response.status_code == 413


def test_document_lifecycle(client):
    first = upload(client, "Blood Test.pdf", b"%PDF lipid panel", content_type="application/pdf")
    second = upload(client, "Diet Plan.txt", b"breakfast: poha")
    third = upload(client, "scan.png", b"\x89PNG")
    assert first.status_code == second.status_code == third.status_code == 200

    first, second, third = first.json(), second.json(), third.json()
    assert first["document_name"] == "blood_test.pdf"
    assert first["previous_hash"] == "0"
    assert second["previous_hash"] == first["block_hash"]
    assert third["previous_hash"] == second["block_hash"]

    listing = client.get("/api/documents", headers=USER).json()
    assert [item["name"] for item in listing] == ["blood_test.pdf", "diet_plan.txt", "scan.png"]
    assert listing[0]["content_type"] == "application/pdf"
    assert listing[0]["verification"]["block_hash"] == first["block_hash"]
    assert client.get("/api/documents", headers={"X-User-Id": "user-2"}).json() == []

    download = client.get("/api/documents/diet_plan.txt/download")
    assert download.status_code == 200
    assert download.content == b"breakfast: poha"

    verify = client.post("/api/documents/blood_test.pdf/verify", headers=USER)
    assert verify.json() == {"document_name": "blood_test.pdf", "valid": True}

    chain = client.get("/api/documents/chain").json()
    assert chain["length"] == 3
    assert chain["visited"] == 3
    assert chain["intact"] is True

    assert client.delete("/api/documents/diet_plan.txt", headers=USER).status_code == 200
    assert client.get("/api/documents/diet_plan.txt/download").status_code == 404
    assert client.delete("/api/documents/diet_plan.txt", headers=USER).status_code == 404

    chain = client.get("/api/documents/chain").json()
    assert chain["length"] == 2
    assert chain["intact"] is False
    assert chain["breaks"] == ["scan.png"]


def test_verify_detects_tampered_bytes(client):
    upload(client, "report.txt", b"hba1c 5.4")
    blob_root = client.app.state.document_service.blob_storage.root
    (blob_root / "report.txt").write_bytes(b"hba1c 4.9")

    verify = client.post("/api/documents/report.txt/verify", headers=USER)

    assert verify.json()["valid"] is False


def test_verify_unknown_document_is_invalid(client):
    verify = client.post("/api/documents/missing.pdf/verify")
    assert verify.status_code == 200
    assert verify.json()["valid"] is False


def test_reupload_keeps_the_chain_intact(client):
    upload(client, "plan.txt", b"week 1")
    upload(client, "other.txt", b"x")
    latest = upload(client, "plan.txt", b"week 2").json()

    chain = client.get("/api/documents/chain").json()
    assert chain["length"] == 3
    assert chain["intact"] is True

    listing = client.get("/api/documents", headers=USER).json()
    assert [item["name"] for item in listing] == ["other.txt", "plan.txt"]
    assert listing[1]["verification"]["block_hash"] == latest["block_hash"]


def test_delete_by_another_user_is_not_found(client):
    upload(client, "report.pdf", b"%PDF mine")

    response = client.delete("/api/documents/report.pdf", headers={"X-User-Id": "user-2"})

    assert response.status_code == 404
    assert client.get("/api/documents/report.pdf/download").content == b"%PDF mine"
