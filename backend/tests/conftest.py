import os
from types import SimpleNamespace
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session as SQLModelSession

# Configure the test database before the application modules are imported
TEST_DB_PATH = os.path.abspath("test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["APP_ENV"] = "test"
os.environ["PUBLISH_SCHEDULER_INTERVAL_SECONDS"] = "0"
os.environ.pop("GEMINI_API_KEY", None)

try:
    os.remove(TEST_DB_PATH)
except FileNotFoundError:
    pass

from lms_api import db  # noqa: E402
from lms_api.models import User  # noqa: E402
from lms_api.security import create_access_token, get_password_hash  # noqa: E402
from lms_api.services.cached_vector_search import get_search_cache  # noqa: E402
from lms_api.services.gemini import get_gemini_client  # noqa: E402

VOCABULARY = ("enrollment", "assignment", "quiz", "grade", "library", "schedule")


class FakeGeminiClient:
    """Deterministic stand-in for the Gemini API: bag-of-words embeddings and canned answers."""

    def __init__(self, answer: str = "Enrollment opens two weeks before classes start."):
        self.answer = answer
        self.embed_calls = []
        self.prompts = []

    def embed(self, text, task_type="retrieval_query"):
        self.embed_calls.append((text, task_type))
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.01]

    def generate(self, prompt):
        self.prompts.append(prompt)
        return self.answer


@pytest.fixture(scope="session")
def client():
    from lms_api.main import app

    db.init_db()

    def override_get_session():
        session = SQLModelSession(db.engine)
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[db.get_session] = override_get_session

    # Without the context manager the lifespan (seeding, publish loop) stays off
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture()
def fake_gemini(client: TestClient):
    fake = FakeGeminiClient()
    client.app.dependency_overrides[get_gemini_client] = lambda: fake
    get_search_cache().clear()
    yield fake
    client.app.dependency_overrides.pop(get_gemini_client, None)
    get_search_cache().clear()


@pytest.fixture()
def make_user(client: TestClient):
    def _make(role: str, password: str = "secret123"):
        suffix = uuid4().hex[:8]
        email = f"{role}-{suffix}@test.com"
        with SQLModelSession(db.engine) as session:
            user = User(
                email=email,
                full_name=f"{role.title()} {suffix}",
                hashed_password=get_password_hash(password),
                role=role,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            user_id = user.id
        token = create_access_token(email, extra={"role": role})
        return SimpleNamespace(
            id=user_id,
            email=email,
            password=password,
            headers={"Authorization": f"Bearer {token}"},
        )

    return _make


class LmsFactory:
    """Builds courses and module trees through the API as an admin."""

    def __init__(self, client: TestClient, admin):
        self.client = client
        self.admin = admin

    def course(self, mentor_id=None, student_ids=()):
        resp = self.client.post(
            "/courses/",
            json={"code": f"C-{uuid4().hex[:8]}", "name": "Course", "mentor_id": mentor_id},
            headers=self.admin.headers,
        )
        assert resp.status_code == 201, resp.text
        course = resp.json()
        for student_id in student_ids:
            enroll = self.client.post(
                f"/courses/{course['id']}/enrollments",
                json={"student_id": student_id},
                headers=self.admin.headers,
            )
            assert enroll.status_code == 201, enroll.text
        return course

    def module(self, course_id, title="Module", publish=True):
        resp = self.client.post("/lms/", json={"course_id": course_id, "title": title}, headers=self.admin.headers)
        assert resp.status_code == 201, resp.text
        module = resp.json()
        if publish:
            published = self.client.patch(f"/lms/{module['id']}/publish", headers=self.admin.headers)
            assert published.status_code == 200, published.text
        return module

    def section(self, module_id, title=None, parent_section_id=None, publish=True):
        body = {"title": title or f"Section {uuid4().hex[:6]}"}
        if parent_section_id is not None:
            body["parent_section_id"] = parent_section_id
        resp = self.client.post(f"/lms/{module_id}/sections", json=body, headers=self.admin.headers)
        assert resp.status_code == 201, resp.text
        section = resp.json()
        if publish:
            published = self.client.patch(
                f"/lms/{module_id}/sections/{section['id']}/publish", headers=self.admin.headers
            )
            assert published.status_code == 200, published.text
        return section

    def content(self, module_id, section_id=None, content_type="lesson", title=None, payload=None, publish=True, **extra):
        body = {"title": title or f"Content {uuid4().hex[:6]}", "content_type": content_type, **extra}
        if section_id is not None:
            body["module_section_id"] = section_id
        if payload is not None:
            body["payload"] = payload
        resp = self.client.post(f"/lms/{module_id}/contents/", json=body, headers=self.admin.headers)
        assert resp.status_code == 201, resp.text
        content = resp.json()
        if publish:
            published = self.client.patch(
                f"/lms/{module_id}/contents/{content['id']}/publish", headers=self.admin.headers
            )
            assert published.status_code == 200, published.text
        return content


@pytest.fixture()
def lms(client: TestClient, make_user):
    """An admin, a course mentor, an enrolled student and a published module with one section."""
    admin = make_user("admin")
    mentor = make_user("mentor")
    student = make_user("student")
    factory = LmsFactory(client, admin)
    course = factory.course(mentor_id=mentor.id, student_ids=[student.id])
    module = factory.module(course["id"])
    section = factory.section(module["id"], title="Week 1")
    return SimpleNamespace(
        admin=admin,
        mentor=mentor,
        student=student,
        course=course,
        module=module,
        section=section,
        factory=factory,
    )
