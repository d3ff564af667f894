from __future__ import annotations

from dataclasses import dataclass

TEACHER = "teacher"
STUDENT = "student"
ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Every service call receives one of these explicitly as its actor;
    nothing in the service layer reads identity from ambient state.

        user_id: subject from JWT (opaque, issued by the auth service)
        roles: platform roles (teacher, student, admin)
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)

    def is_teacher(self) -> bool:
        return TEACHER in self.roles

    def is_student(self) -> bool:
        return STUDENT in self.roles

    def is_platform_admin(self) -> bool:
        return ADMIN in self.roles
