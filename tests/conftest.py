from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from classwork.api.dependencies import get_clock, memory_store
from classwork.main import app
from classwork.services import token_service
from classwork.services.cache import cache_service

# Ensure repo root is on sys.path so `import classwork` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_store() -> None:
    """Clear the in-memory store between tests."""
    memory_store._classes.clear()
    memory_store._enrollments.clear()
    memory_store._tasks.clear()
    memory_store._questions.clear()
    memory_store._submissions.clear()
    memory_store._submission_keys.clear()
    memory_store._answers.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_dependency_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(username: str, roles: list[str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(username, roles)}"}


TEACHER_HEADERS = auth("teacher-1", ["teacher"])
OTHER_TEACHER_HEADERS = auth("teacher-2", ["teacher"])
STUDENT_HEADERS = auth("student-1", ["student"])
OTHER_STUDENT_HEADERS = auth("student-2", ["student"])
ADMIN_HEADERS = auth("admin-1", ["admin"])


def pin_clock(moment: datetime) -> None:
    """Make every workflow call in the app see ``moment`` as now."""
    app.dependency_overrides[get_clock] = lambda: lambda: moment


# ---------------------------------------------------------------------------
# API seeding helpers
# ---------------------------------------------------------------------------


def create_class_with_student(
    client: TestClient, student_id: str = "student-1"
) -> str:
    resp = client.post(
        "/v1/classes", json={"name": "Algebra I"}, headers=TEACHER_HEADERS
    )
    assert resp.status_code == 201
    class_id = resp.json()["id"]
    resp = client.post(
        f"/v1/classes/{class_id}/enrollments",
        json={"student_id": student_id},
        headers=TEACHER_HEADERS,
    )
    assert resp.status_code == 201
    return class_id


def create_quiz(
    client: TestClient,
    class_id: str,
    *,
    due_date: datetime | None = None,
    published: bool = True,
) -> dict:
    """Task with Q1 (multiple choice, 10 pts, correct "4") and Q2 (essay, 10 pts).

    Returns ids: task_id, mc_id, essay_id, correct_option_id, wrong_option_id.
    """
    body: dict = {"title": "Quiz 1", "points": 20, "published": False}
    if due_date is not None:
        body["due_date"] = due_date.isoformat()
    resp = client.post(
        f"/v1/classes/{class_id}/tasks", json=body, headers=TEACHER_HEADERS
    )
    assert resp.status_code == 201
    task_id = resp.json()["id"]

    resp = client.post(
        f"/v1/tasks/{task_id}/questions",
        json={
            "position": 1,
            "kind": "MULTIPLE_CHOICE",
            "prompt": "2 + 2 = ?",
            "points": 10,
            "options": [
                {"text": "3", "is_correct": False},
                {"text": "4", "is_correct": True},
            ],
        },
        headers=TEACHER_HEADERS,
    )
    assert resp.status_code == 201
    mc = resp.json()
    correct = next(o for o in mc["options"] if o["is_correct"])
    wrong = next(o for o in mc["options"] if not o["is_correct"])

    resp = client.post(
        f"/v1/tasks/{task_id}/questions",
        json={
            "position": 2,
            "kind": "ESSAY",
            "prompt": "Explain why.",
            "points": 10,
        },
        headers=TEACHER_HEADERS,
    )
    assert resp.status_code == 201
    essay = resp.json()

    if published:
        resp = client.patch(
            f"/v1/tasks/{task_id}", json={"published": True}, headers=TEACHER_HEADERS
        )
        assert resp.status_code == 200

    return {
        "task_id": task_id,
        "mc_id": mc["id"],
        "essay_id": essay["id"],
        "correct_option_id": correct["id"],
        "wrong_option_id": wrong["id"],
    }
