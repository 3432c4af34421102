from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient


def _assignment(lms, **payload):
    content = lms.factory.content(
        lms.module["id"], lms.section["id"], content_type="assignment", payload=payload or {"max_score": 100}
    )
    return content["payload"]["id"]


def _submit(client, assignment_id, headers, **body):
    return client.post(f"/assignments/{assignment_id}/submit", json=body, headers=headers)


def _url(assignment_id, submission_id, action=""):
    return f"/assignments/{assignment_id}/submission/{submission_id}{action}"


def test_draft_finalize_return_and_resubmit(client: TestClient, lms):
    assignment_id = _assignment(lms, allow_resubmission=True)
    headers = lms.student.headers

    r = _submit(client, assignment_id, headers)
    assert r.status_code == 201, r.text
    draft = r.json()
    assert draft["state"] == "draft"
    assert draft["attempt_number"] == 1

    dup = _submit(client, assignment_id, headers, content={"text": "again"})
    assert dup.status_code == 409
    assert dup.json()["detail"] == "Submission already exists for this assignment and student."

    r = client.post(_url(assignment_id, draft["id"], "/finalize"), headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Submission must have content or attachments"

    r = client.put(_url(assignment_id, draft["id"]), json={"content": {"text": "My essay"}}, headers=headers)
    assert r.status_code == 200
    assert r.json()["content"] == {"text": "My essay"}

    r = client.post(_url(assignment_id, draft["id"], "/finalize"), headers=headers)
    assert r.status_code == 200, r.text
    submitted = r.json()
    assert submitted["state"] == "submitted"
    assert submitted["submitted_at"] is not None
    assert submitted["late_days"] is None

    r = client.put(_url(assignment_id, draft["id"]), json={"content": {"text": "edit"}}, headers=headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Can only modify draft submissions"

    r = client.patch(_url(assignment_id, draft["id"], "/resubmit"), headers=headers)
    assert r.status_code == 409

    r = client.patch(
        _url(assignment_id, draft["id"], "/return"), json={"feedback": "Add sources"}, headers=lms.mentor.headers
    )
    assert r.status_code == 200
    assert r.json()["state"] == "returned"
    assert r.json()["feedback"] == "Add sources"

    r = client.patch(_url(assignment_id, draft["id"], "/resubmit"), headers=headers)
    assert r.status_code == 200
    assert r.json()["state"] == "draft"
    assert r.json()["submitted_at"] is None

    r = client.post(_url(assignment_id, draft["id"], "/finalize"), headers=headers)
    assert r.json()["state"] == "submitted"
    assert r.json()["attempt_number"] == 1


def test_resubmission_requires_permission(client: TestClient, lms):
    assignment_id = _assignment(lms, allow_resubmission=False)
    draft = _submit(client, assignment_id, lms.student.headers, content={"text": "x"}).json()
    client.post(_url(assignment_id, draft["id"], "/finalize"), headers=lms.student.headers)
    client.patch(_url(assignment_id, draft["id"], "/return"), json={}, headers=lms.mentor.headers)

    r = client.patch(_url(assignment_id, draft["id"], "/resubmit"), headers=lms.student.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Resubmission is not allowed for this assignment"


def test_submissions_are_private_to_their_owner(client: TestClient, lms, make_user):
    assignment_id = _assignment(lms)
    draft = _submit(client, assignment_id, lms.student.headers, content={"text": "mine"}).json()

    classmate = make_user("student")
    client.post(
        f"/courses/{lms.course['id']}/enrollments", json={"student_id": classmate.id}, headers=lms.admin.headers
    )
    r = client.get(_url(assignment_id, draft["id"]), headers=classmate.headers)
    assert r.status_code == 403
    assert r.json()["detail"] == "Not authorized to access this submission"

    listing = client.get(f"/assignments/{assignment_id}/submissions", headers=classmate.headers)
    assert listing.json() == []

    staff_listing = client.get(f"/assignments/{assignment_id}/submissions", headers=lms.mentor.headers)
    assert [s["id"] for s in staff_listing.json()] == [draft["id"]]

    outsider = make_user("student")
    r = _submit(client, assignment_id, outsider.headers, content={"text": "let me in"})
    assert r.status_code == 403


def test_late_submissions(client: TestClient, lms):
    past_due = (datetime.now(timezone.utc) - timedelta(hours=30)).isoformat()

    strict_id = _assignment(lms, due_date=past_due, allow_late_submission=False)
    draft = _submit(client, strict_id, lms.student.headers, content={"text": "late"}).json()
    r = client.post(_url(strict_id, draft["id"], "/finalize"), headers=lms.student.headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Late submissions are not allowed for this assignment"

    lenient_id = _assignment(lms, due_date=past_due, allow_late_submission=True, late_penalty=10)
    draft = _submit(client, lenient_id, lms.student.headers, content={"text": "late"}).json()
    r = client.post(_url(lenient_id, draft["id"], "/finalize"), headers=lms.student.headers)
    assert r.status_code == 200, r.text
    assert r.json()["late_days"] == 2

    graded = client.post(
        f"/grading/assignment-submissions/{draft['id']}", json={"raw_score": 100}, headers=lms.mentor.headers
    )
    assert graded.status_code == 200, graded.text
    assert graded.json()["final_score"] == 80.0
    assert graded.json()["grade"] == "B"


def test_attempt_limit(client: TestClient, lms):
    assignment_id = _assignment(lms, max_attempts=1)
    first = _submit(client, assignment_id, lms.student.headers, content={"text": "one"}).json()
    assert client.post(_url(assignment_id, first["id"], "/finalize"), headers=lms.student.headers).status_code == 200

    second = _submit(client, assignment_id, lms.student.headers, content={"text": "two"})
    assert second.status_code == 201
    assert second.json()["attempt_number"] == 2

    r = client.post(_url(assignment_id, second.json()["id"], "/finalize"), headers=lms.student.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Maximum submission attempts (1) exceeded"


def test_reopened_attempt_and_newer_draft_keep_their_numbers(client: TestClient, lms):
    assignment_id = _assignment(lms, allow_resubmission=True)
    headers = lms.student.headers
    first = _submit(client, assignment_id, headers, content={"text": "one"}).json()
    assert client.post(_url(assignment_id, first["id"], "/finalize"), headers=headers).status_code == 200

    second = _submit(client, assignment_id, headers, content={"text": "two"}).json()
    assert second["attempt_number"] == 2

    client.patch(_url(assignment_id, first["id"], "/return"), json={"feedback": "Redo"}, headers=lms.mentor.headers)
    assert client.patch(_url(assignment_id, first["id"], "/resubmit"), headers=headers).json()["state"] == "draft"

    r = client.post(_url(assignment_id, second["id"], "/finalize"), headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["attempt_number"] == 2

    r = client.post(_url(assignment_id, first["id"], "/finalize"), headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["attempt_number"] == 1

def test_group_mode_rules(client: TestClient, lms):
    group_id = _assignment(lms, mode="group")
    r = _submit(client, group_id, lms.student.headers, content={"text": "solo"})
    assert r.status_code == 400
    assert r.json()["detail"] == "This assignment requires group submission"

    r = _submit(client, group_id, lms.student.headers, group_snapshot={"group_id": "g1", "member_ids": [-1]})
    assert r.status_code == 400
    assert r.json()["detail"] == "Student is not a member of the submitted group"

    r = _submit(
        client, group_id, lms.student.headers, group_snapshot={"group_id": "g1", "member_ids": [lms.student.id]}
    )
    assert r.status_code == 201
    assert r.json()["group_snapshot"]["group_id"] == "g1"

    individual_id = _assignment(lms)
    r = _submit(
        client, individual_id, lms.student.headers, group_snapshot={"group_id": "g1", "member_ids": [lms.student.id]}
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "This assignment does not allow group submissions"


def test_delete_draft_soft_and_hard(client: TestClient, lms):
    assignment_id = _assignment(lms)
    draft = _submit(client, assignment_id, lms.student.headers, content={"text": "draft"}).json()

    r = client.delete(_url(assignment_id, draft["id"]), headers=lms.student.headers)
    assert r.status_code == 200
    assert r.json()["message"] == "Assignment submission soft-deleted"

    r = client.get(_url(assignment_id, draft["id"]), headers=lms.student.headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "Assignment submission not found"

    # The soft-deleted draft does not block a fresh one
    again = _submit(client, assignment_id, lms.student.headers, content={"text": "fresh"})
    assert again.status_code == 201, again.text
    assert again.json()["attempt_number"] == 1

    r = client.delete(
        _url(assignment_id, again.json()["id"]), params={"direct_delete": True}, headers=lms.student.headers
    )
    assert r.json()["message"] == "Assignment submission permanently deleted"


def test_graded_submission_is_locked(client: TestClient, lms):
    assignment_id = _assignment(lms)
    draft = _submit(client, assignment_id, lms.student.headers, content={"text": "final"}).json()
    client.post(_url(assignment_id, draft["id"], "/finalize"), headers=lms.student.headers)
    client.post(f"/grading/assignment-submissions/{draft['id']}", json={"raw_score": 91}, headers=lms.mentor.headers)

    r = client.put(_url(assignment_id, draft["id"]), json={"content": {"text": "x"}}, headers=lms.student.headers)
    assert r.status_code == 403
    r = client.delete(_url(assignment_id, draft["id"]), headers=lms.student.headers)
    assert r.status_code == 403
    assert r.json()["detail"] == "Cannot delete graded submission"


def test_unpublished_assignment_cannot_be_submitted(client: TestClient, lms):
    content = lms.factory.content(
        lms.module["id"], lms.section["id"], content_type="assignment", payload={"max_score": 10}, publish=False
    )
    r = _submit(client, content["payload"]["id"], lms.student.headers, content={"text": "early"})
    assert r.status_code == 404
