from fastapi.testclient import TestClient


def test_course_creation_rules(client: TestClient, lms, make_user):
    code = lms.course["code"]
    r = client.post("/courses/", json={"code": code, "name": "Copy"}, headers=lms.admin.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Course code already exists"

    r = client.post(
        "/courses/", json={"code": "NEW-1", "name": "New", "mentor_id": lms.student.id}, headers=lms.admin.headers
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Mentor not found"

    r = client.post("/courses/", json={"code": "NEW-2", "name": "New"}, headers=lms.mentor.headers)
    assert r.status_code == 403


def test_enrollment_rules(client: TestClient, lms):
    url = f"/courses/{lms.course['id']}/enrollments"
    r = client.post(url, json={"student_id": lms.student.id}, headers=lms.admin.headers)
    assert r.status_code == 409
    assert r.json()["detail"] == "Student is already enrolled in this course"

    r = client.post(url, json={"student_id": lms.mentor.id}, headers=lms.admin.headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "Student not found"

    r = client.post("/courses/bad-id/enrollments", json={"student_id": lms.student.id}, headers=lms.admin.headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid course ID format"


def test_course_listing_is_scoped_by_role(client: TestClient, lms, make_user):
    other = lms.factory.course()

    student_courses = [c["id"] for c in client.get("/courses/", headers=lms.student.headers).json()]
    assert student_courses == [lms.course["id"]]

    mentor_courses = [c["id"] for c in client.get("/courses/", headers=lms.mentor.headers).json()]
    assert mentor_courses == [lms.course["id"]]

    admin_courses = {c["id"] for c in client.get("/courses/", headers=lms.admin.headers).json()}
    assert {lms.course["id"], other["id"]} <= admin_courses

    newcomer = make_user("student")
    assert client.get("/courses/", headers=newcomer.headers).json() == []
