from fastapi.testclient import TestClient


def _submitted_assignment(client, lms, text="Answer", **payload):
    content = lms.factory.content(
        lms.module["id"],
        lms.section["id"],
        content_type="assignment",
        payload={"max_score": 100, "allow_resubmission": True, **payload},
    )
    assignment_id = content["payload"]["id"]
    draft = client.post(
        f"/assignments/{assignment_id}/submit", json={"content": {"text": text}}, headers=lms.student.headers
    ).json()
    finalized = client.post(
        f"/assignments/{assignment_id}/submission/{draft['id']}/finalize", headers=lms.student.headers
    )
    assert finalized.status_code == 200, finalized.text
    return assignment_id, draft["id"]


def test_grade_and_update_record(client: TestClient, lms):
    _, submission_id = _submitted_assignment(client, lms)

    r = client.post(
        f"/grading/assignment-submissions/{submission_id}",
        json={"raw_score": 85, "feedback": "Solid work"},
        headers=lms.mentor.headers,
    )
    assert r.status_code == 200, r.text
    record = r.json()
    assert record["final_score"] == 85.0
    assert record["grade"] == "B"
    assert record["graded_by"] == lms.mentor.id

    r = client.patch(f"/grading/records/{record['id']}", json={"raw_score": 58}, headers=lms.admin.headers)
    assert r.status_code == 200
    assert r.json()["final_score"] == 58.0
    assert r.json()["grade"] == "F"
    assert r.json()["graded_by"] == lms.admin.id


def test_grading_rules(client: TestClient, lms, make_user):
    assignment_id, submission_id = _submitted_assignment(client, lms)

    draft_assignment = lms.factory.content(
        lms.module["id"], lms.section["id"], content_type="assignment", payload={"max_score": 10}
    )["payload"]["id"]
    draft = client.post(
        f"/assignments/{draft_assignment}/submit", json={"content": {"text": "wip"}}, headers=lms.student.headers
    ).json()
    r = client.post(f"/grading/assignment-submissions/{draft['id']}", json={"raw_score": 70}, headers=lms.mentor.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Can only grade submissions that have been submitted."

    outsider = make_user("mentor")
    r = client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 70}, headers=outsider.headers)
    assert r.status_code == 403
    r = client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 70}, headers=lms.student.headers)
    assert r.status_code == 403
    r = client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 120}, headers=lms.mentor.headers)
    assert r.status_code == 422

    first = client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 70}, headers=lms.mentor.headers)
    assert first.status_code == 200

    # A returned and resubmitted attempt keeps its record; it is updated, not duplicated
    base = f"/assignments/{assignment_id}/submission/{submission_id}"
    client.patch(f"{base}/return", json={"feedback": "Redo"}, headers=lms.mentor.headers)
    client.patch(f"{base}/resubmit", headers=lms.student.headers)
    client.post(f"{base}/finalize", headers=lms.student.headers)
    r = client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 90}, headers=lms.mentor.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "A grade record already exists for this submission."

    r = client.patch(f"/grading/records/{first.json()['id']}", json={"raw_score": 90}, headers=lms.mentor.headers)
    assert r.status_code == 200
    assert r.json()["grade"] == "A"
    state = client.get(base, headers=lms.student.headers).json()["state"]
    assert state == "graded"


def test_gradebook_views(client: TestClient, lms, make_user):
    assignment_id, submission_id = _submitted_assignment(client, lms, text="Essay")
    client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 92}, headers=lms.mentor.headers)

    classmate = make_user("student")
    client.post(f"/courses/{lms.course['id']}/enrollments", json={"student_id": classmate.id}, headers=lms.admin.headers)

    r = client.get(f"/grading/lms/{lms.module['id']}/gradebook", headers=lms.mentor.headers)
    assert r.status_code == 200, r.text
    book = r.json()
    assert [item["id"] for item in book["items"]] == [assignment_id]
    assert {row["student_id"] for row in book["students"]} == {lms.student.id, classmate.id}
    mine = next(row for row in book["students"] if row["student_id"] == lms.student.id)
    assert mine["grades"][assignment_id]["grade"] == "A"
    theirs = next(row for row in book["students"] if row["student_id"] == classmate.id)
    assert theirs["grades"][assignment_id] is None

    r = client.get(f"/grading/lms/{lms.module['id']}/gradebook", headers=classmate.headers)
    assert [row["student_id"] for row in r.json()["students"]] == [classmate.id]


def test_gradebook_export(client: TestClient, lms):
    _, submission_id = _submitted_assignment(client, lms)
    client.post(f"/grading/assignment-submissions/{submission_id}", json={"raw_score": 75}, headers=lms.mentor.headers)
    base = f"/grading/lms/{lms.module['id']}/gradebook/export"

    xlsx = client.get(base, params={"format": "xlsx"}, headers=lms.mentor.headers)
    assert xlsx.status_code == 200
    assert xlsx.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    assert xlsx.content[:2] == b"PK"

    pdf = client.get(base, params={"format": "pdf"}, headers=lms.admin.headers)
    assert pdf.status_code == 200
    assert pdf.content.startswith(b"%PDF")
    assert "attachment" in pdf.headers["content-disposition"]

    assert client.get(base, headers=lms.student.headers).status_code == 403
    assert client.get(base, params={"format": "csv"}, headers=lms.mentor.headers).status_code == 422
