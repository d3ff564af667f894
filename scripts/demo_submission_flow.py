"""Demo: walk one assignment from authoring to grading using FastAPI TestClient.

Run with:
    python scripts/demo_submission_flow.py

Uses the in-memory store and the ephemeral dev signing key, so leave
DATABASE_URL and JWT_PUBLIC_KEY unset.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from classwork.main import app
from classwork.services import token_service

TEACHER = "demo-teacher"
STUDENT = "demo-student"


def _bearer(sub: str, role: str) -> dict[str, str]:
    token = token_service.create_access_token(sub=sub, roles=[role])
    return {"Authorization": f"Bearer {token}"}


def main() -> None:
    client = TestClient(app)
    teacher = _bearer(TEACHER, "teacher")
    student = _bearer(STUDENT, "student")

    # ── Step 1: class and enrollment ────────────────────────────────
    r = client.post("/v1/classes", json={"name": "Demo Algebra"}, headers=teacher)
    class_id = r.json()["id"]
    print(f"1. POST /v1/classes  → {r.status_code}  id={class_id}")

    r = client.post(
        f"/v1/classes/{class_id}/enrollments",
        json={"student_id": STUDENT},
        headers=teacher,
    )
    print(f"2. POST .../enrollments  → {r.status_code}")

    # ── Step 2: author the task ─────────────────────────────────────
    r = client.post(
        f"/v1/classes/{class_id}/tasks",
        json={"title": "Demo Quiz", "points": 20},
        headers=teacher,
    )
    task_id = r.json()["id"]
    print(f"3. POST .../tasks  → {r.status_code}  id={task_id}")

    r = client.post(
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
        headers=teacher,
    )
    mc = r.json()
    correct_id = next(o["id"] for o in mc["options"] if o["is_correct"])
    r = client.post(
        f"/v1/tasks/{task_id}/questions",
        json={"position": 2, "kind": "ESSAY", "prompt": "Explain.", "points": 10},
        headers=teacher,
    )
    essay = r.json()
    print(f"4. POST .../questions (x2)  → {r.status_code}")

    r = client.patch(f"/v1/tasks/{task_id}", json={"published": True}, headers=teacher)
    print(f"5. PATCH /v1/tasks/{{id}} (publish)  → {r.status_code}")

    # ── Step 3: the student works on it ─────────────────────────────
    r = client.post(f"/v1/tasks/{task_id}/submissions", headers=student)
    submission_id = r.json()["id"]
    print(f"6. POST .../submissions  → {r.status_code}  {r.json()['status']}")

    r = client.patch(
        f"/v1/submissions/{submission_id}",
        json={"status": "SUBMITTED"},
        headers=student,
    )
    missing = r.json()["detail"]["missing_question_ids"]
    print(f"7. PATCH (incomplete)  → {r.status_code}  missing={missing}")

    client.put(
        f"/v1/submissions/{submission_id}/answers/{mc['id']}",
        json={"chosen_option_id": correct_id},
        headers=student,
    )
    client.put(
        f"/v1/submissions/{submission_id}/answers/{essay['id']}",
        json={"text_response": "Two pairs make four."},
        headers=student,
    )
    r = client.patch(
        f"/v1/submissions/{submission_id}",
        json={"status": "SUBMITTED"},
        headers=student,
    )
    print(f"8. PATCH (submit)  → {r.status_code}  {r.json()['status']}")

    # ── Step 4: grading ─────────────────────────────────────────────
    r = client.post(
        f"/v1/submissions/{submission_id}/grade",
        json={"scores": {essay["id"]: 7}, "feedback": "Good reasoning."},
        headers=teacher,
    )
    result = r.json()["result"]
    print(
        f"9. POST .../grade  → {r.status_code}  "
        f"total={result['total_score']}/{result['max_score']}"
    )

    r = client.get(f"/v1/classes/{class_id}/results/me", headers=student)
    print(f"10. GET .../results/me  → {r.status_code}  {r.json()}")

    print("\nAll steps completed.")


if __name__ == "__main__":
    main()
