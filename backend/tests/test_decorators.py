import asyncio
import logging

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError

from lms_api.utils.db_errors import DatabaseError, DbErrorCode, classify_db_error, db_error
from lms_api.utils.log import log


class FakeSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def _unique_violation():
    return IntegrityError("INSERT INTO course", {}, Exception("UNIQUE constraint failed: course.code"))


class CourseRepo:
    def __init__(self):
        self.session = FakeSession()

    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Course code already exists"})
    def create(self, code):
        raise _unique_violation()

    @db_error()
    def find(self, course_id):
        raise NoResultFound("No row was found when one was required")

    @db_error(
        {
            DbErrorCode.RECORD_NOT_FOUND: lambda message, args: HTTPException(
                status_code=404, detail=f"Course {args['course_id']} not found"
            )
        }
    )
    def find_with_callable(self, course_id):
        raise NoResultFound()

    @db_error()
    def broken(self):
        raise ValueError("not a database problem")

    @db_error()
    def disk_failure(self):
        raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

    @db_error()
    def too_long(self):
        raise DatabaseError(DbErrorCode.VALUE_TOO_LONG)

    @db_error({DbErrorCode.UNIQUE_CONSTRAINT: "Duplicate"})
    async def create_async(self, code):
        raise _unique_violation()


def test_db_error_maps_unique_violation_with_override_and_rolls_back():
    repo = CourseRepo()
    with pytest.raises(HTTPException) as exc_info:
        repo.create("LMS101")
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "Course code already exists"
    assert repo.session.rollbacks == 1


def test_db_error_uses_default_message_for_missing_records():
    with pytest.raises(HTTPException) as exc_info:
        CourseRepo().find("abc")
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Record not found."


def test_db_error_callable_override_receives_call_arguments():
    with pytest.raises(HTTPException) as exc_info:
        CourseRepo().find_with_callable(course_id="42")
    assert exc_info.value.detail == "Course 42 not found"


def test_db_error_lets_unrelated_errors_through():
    repo = CourseRepo()
    with pytest.raises(ValueError):
        repo.broken()
    with pytest.raises(OperationalError):
        repo.disk_failure()
    assert repo.session.rollbacks == 0


def test_db_error_translates_service_raised_codes():
    with pytest.raises(HTTPException) as exc_info:
        CourseRepo().too_long()
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Value is too long."


def test_db_error_wraps_coroutines():
    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(CourseRepo().create_async("X"))
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "Duplicate"


def test_classify_db_error_recognises_integrity_flavours():
    fk = IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))
    not_null = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: course.name"))
    assert classify_db_error(_unique_violation()) == DbErrorCode.UNIQUE_CONSTRAINT
    assert classify_db_error(fk) == DbErrorCode.FOREIGN_KEY_CONSTRAINT
    assert classify_db_error(not_null) == DbErrorCode.MISSING_REQUIRED_VALUE
    assert classify_db_error(KeyError("x")) is None


class Greeter:
    @log()
    def greet(self, name):
        return f"hi {name}"

    @log(
        args_message=lambda a: f"Greeting {a['name']}",
        success_message=lambda r, a: f"Said {r}",
    )
    def greet_custom(self, name):
        return f"hello {name}"

    @log(args_message=False, success_message=False)
    def quiet(self):
        return 1

    @log(error_message=lambda e, a: f"Could not greet {a['name']}: {e}")
    def fail(self, name):
        raise RuntimeError("boom")


def _messages(caplog, logger_name):
    return [record.getMessage() for record in caplog.records if record.name == logger_name]


def test_log_emits_start_and_success_with_default_text(caplog):
    caplog.set_level(logging.INFO)
    assert Greeter().greet("ana") == "hi ana"
    assert _messages(caplog, "Greeter") == ["[greet] START: name='ana'", "[greet] SUCCESS: completed"]


def test_log_uses_custom_builders(caplog):
    caplog.set_level(logging.INFO)
    Greeter().greet_custom("bo")
    assert _messages(caplog, "Greeter") == [
        "[greet_custom] START: Greeting bo",
        "[greet_custom] SUCCESS: Said hello bo",
    ]


def test_log_can_be_silenced(caplog):
    caplog.set_level(logging.INFO)
    Greeter().quiet()
    assert _messages(caplog, "Greeter") == []


def test_log_records_failure_and_reraises(caplog):
    caplog.set_level(logging.INFO)
    with pytest.raises(RuntimeError):
        Greeter().fail("cy")
    records = [record for record in caplog.records if record.name == "Greeter"]
    assert records[-1].levelno == logging.ERROR
    assert records[-1].getMessage() == "[fail] FAIL: Could not greet cy: boom"
