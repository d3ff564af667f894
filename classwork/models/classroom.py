from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Classroom:
    id: UUID
    name: str
    teacher_id: str

    @staticmethod
    def new(*, name: str, teacher_id: str) -> Classroom:
        return Classroom(id=uuid4(), name=name, teacher_id=teacher_id)


@dataclass(frozen=True, slots=True)
class Enrollment:
    class_id: UUID
    student_id: str
    active: bool = True
