from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlmodel import Session

import lms_api.db as db
from lms_api.models import ModuleContent, Video
from lms_api.services.content_resources import VideoService


QUIZ_PAYLOAD = {
    "max_attempts": 2,
    "questions": [
        {
            "id": "q1",
            "type": "multiple_choice",
            "points": 1,
            "text": "Powerhouse of the cell?",
            "options": [
                {"id": "a", "text": "Mitochondria", "correct": True},
                {"id": "b", "text": "Nucleus"},
            ],
        },
        {"id": "q2", "type": "true_false", "points": 1, "text": "Water boils at 50C", "correct_answer": False},
    ],
}


def test_create_lesson_and_reject_duplicate_title(client: TestClient, lms):
    module_id = lms.module["id"]
    lesson = lms.factory.content(
        module_id, lms.section["id"], title="Intro", content={"blocks": [{"type": "paragraph", "text": "Hi"}]}
    )
    assert lesson["content_type"] == "lesson"
    assert lesson["payload"] is None
    assert lesson["content"]["blocks"][0]["text"] == "Hi"

    dup = client.post(
        f"/lms/{module_id}/contents/",
        json={"title": "Intro", "module_section_id": lms.section["id"]},
        headers=lms.admin.headers,
    )
    assert dup.status_code == 409
    assert dup.json()["detail"] == "Module content title already exists in this section."

    # The same title is fine in another section
    other = lms.factory.section(module_id)
    lms.factory.content(module_id, other["id"], title="Intro")


def test_section_must_belong_to_module(client: TestClient, lms):
    other_module = lms.factory.module(lms.course["id"], title="Other")
    r = client.post(
        f"/lms/{other_module['id']}/contents/",
        json={"title": "Misplaced", "module_section_id": lms.section["id"]},
        headers=lms.admin.headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Section does not belong to this module"


def test_assignment_payload_round_trip_and_update(client: TestClient, lms):
    module_id = lms.module["id"]
    content = lms.factory.content(
        module_id,
        lms.section["id"],
        content_type="assignment",
        title="Essay",
        payload={"max_score": 50, "late_penalty": 5, "allow_resubmission": True},
    )
    assert content["payload"]["max_score"] == 50
    assert content["payload"]["late_penalty"] == 5
    assert content["payload"]["mode"] == "individual"

    r = client.patch(
        f"/lms/{module_id}/contents/{content['id']}",
        json={"subtitle": "Week 1 essay", "payload": {"max_attempts": 3}},
        headers=lms.admin.headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["subtitle"] == "Week 1 essay"
    assert r.json()["payload"]["max_attempts"] == 3

    r = client.patch(
        f"/lms/{module_id}/contents/{content['id']}",
        json={"content_type": "quiz"},
        headers=lms.admin.headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Changing contentType is not allowed. Please remove and recreate the content."


def test_student_view_hides_quiz_answers_and_lists_own_submissions(client: TestClient, lms):
    module_id = lms.module["id"]
    content = lms.factory.content(
        module_id, lms.section["id"], content_type="quiz", title="Cells quiz", payload=QUIZ_PAYLOAD
    )
    quiz_id = content["payload"]["id"]

    admin_view = client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.admin.headers)
    assert admin_view.json()["payload"]["questions"][0]["options"][0]["correct"] is True

    started = client.post(f"/quizzes/{quiz_id}", json={"answers": []}, headers=lms.student.headers)
    assert started.status_code == 201, started.text

    student_view = client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.student.headers)
    assert student_view.status_code == 200
    body = student_view.json()
    assert "published_at" not in body
    questions = body["payload"]["questions"]
    assert all("correct" not in option for option in questions[0]["options"])
    assert "correct_answer" not in questions[1]
    assert [s["id"] for s in body["submissions"]] == [started.json()["id"]]


def test_unpublished_content_is_hidden_from_students(client: TestClient, lms):
    module_id = lms.module["id"]
    content = lms.factory.content(module_id, lms.section["id"], publish=False)
    r = client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.student.headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "Module content not found"


def test_content_inside_hidden_section_is_hidden_from_students(client: TestClient, lms):
    module_id = lms.module["id"]
    hidden = lms.factory.section(module_id, title="Drafts", publish=False)
    nested = lms.factory.section(module_id, title="Drafts part 2", parent_section_id=hidden["id"])
    assignment = lms.factory.content(
        module_id, hidden["id"], content_type="assignment", title="Secret", payload={"max_score": 10}
    )
    quiz = lms.factory.content(
        module_id,
        nested["id"],
        content_type="quiz",
        title="Secret quiz",
        payload={"questions": [{"id": "q1", "type": "true_false", "points": 1, "correct_answer": True}]},
    )

    tree = client.get(f"/lms/{module_id}", headers=lms.student.headers).json()
    assert [section["title"] for section in tree["sections"]] == ["Week 1"]

    for content in (assignment, quiz):
        r = client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.student.headers)
        assert r.status_code == 404
        assert r.json()["detail"] == "Module content not found"
        assert client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.admin.headers).status_code == 200

    r = client.post(
        f"/assignments/{assignment['payload']['id']}/submit",
        json={"content": {"text": "peek"}},
        headers=lms.student.headers,
    )
    assert r.status_code == 404
    r = client.post(
        f"/quizzes/{quiz['payload']['id']}",
        json={"answers": [{"question_id": "q1", "selected_answer_id": "true"}]},
        headers=lms.student.headers,
    )
    assert r.status_code == 404

    client.patch(f"/lms/{module_id}/sections/{hidden['id']}/publish", headers=lms.admin.headers)
    r = client.get(f"/lms/{module_id}/contents/{quiz['id']}", headers=lms.student.headers)
    assert r.status_code == 200

def test_resource_contents_require_payload(client: TestClient, lms):
    module_id = lms.module["id"]
    r = client.post(
        f"/lms/{module_id}/contents/",
        json={"title": "Slides", "content_type": "url", "module_section_id": lms.section["id"]},
        headers=lms.admin.headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Payload is required for url content"

    # Nothing was left behind by the failed request
    retry = lms.factory.content(
        module_id, lms.section["id"], content_type="url", title="Slides", payload={"url": "https://example.com/s"}
    )
    assert retry["payload"]["url"] == "https://example.com/s"


def test_soft_delete_marks_content_and_resource(client: TestClient, lms):
    module_id = lms.module["id"]
    content = lms.factory.content(
        module_id,
        lms.section["id"],
        content_type="video",
        title="Lecture",
        payload={"url": "https://videos.example.com/1", "duration": 600},
    )

    r = client.delete(f"/lms/{module_id}/contents/{content['id']}", headers=lms.admin.headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Module content successfully soft-deleted."

    content_id = UUID(content["id"])
    with Session(db.engine) as session:
        assert session.get(ModuleContent, content_id).deleted_at is not None
        video = session.get(Video, UUID(content["payload"]["id"]))
        assert video.deleted_at is not None

        with pytest.raises(HTTPException) as exc_info:
            VideoService(session).find_by_module_content_id(content_id)
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Video not found"

    r = client.get(f"/lms/{module_id}/contents/{content['id']}", headers=lms.admin.headers)
    assert r.status_code == 404


def test_soft_deleted_title_can_be_reused(client: TestClient, lms):
    module_id = lms.module["id"]
    first = lms.factory.content(module_id, lms.section["id"], title="Reusable")
    r = client.delete(f"/lms/{module_id}/contents/{first['id']}", headers=lms.admin.headers)
    assert r.status_code == 200

    second = lms.factory.content(module_id, lms.section["id"], title="Reusable")
    assert second["id"] != first["id"]

    r = client.post(
        f"/lms/{module_id}/contents/",
        json={"title": "Reusable", "content_type": "lesson", "module_section_id": lms.section["id"]},
        headers=lms.admin.headers,
    )
    assert r.status_code == 409
    assert r.json()["detail"] == "Module content title already exists in this section."

def test_hard_delete_removes_content_and_payload(client: TestClient, lms):
    module_id = lms.module["id"]
    content = lms.factory.content(
        module_id, lms.section["id"], content_type="video", title="Gone", payload={"url": "https://v.example.com"}
    )
    r = client.delete(
        f"/lms/{module_id}/contents/{content['id']}",
        params={"direct_delete": True},
        headers=lms.admin.headers,
    )
    assert r.status_code == 200
    assert r.json()["message"] == "Module content successfully deleted."

    with Session(db.engine) as session:
        assert session.get(ModuleContent, UUID(content["id"])) is None
        assert session.get(Video, UUID(content["payload"]["id"])) is None


def test_content_resource_service_conflicts(client: TestClient, lms):
    content = lms.factory.content(
        lms.module["id"], lms.section["id"], content_type="video", title="Dup video", payload={"url": "https://a"}
    )
    with Session(db.engine) as session:
        service = VideoService(session)
        with pytest.raises(HTTPException) as exc_info:
            service.create(UUID(content["id"]), {"url": "https://b"})
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Video already exists for this module content"

        updated = service.update(UUID(content["id"]), {"transcript": "hello"})
        assert updated.transcript == "hello"

        with pytest.raises(HTTPException) as exc_info:
            service.update(uuid4(), {"url": "https://c"})
        assert exc_info.value.detail == "Video not found"

        assert service.remove(UUID(content["id"]), direct_delete=True) == {"message": "Video successfully removed"}
