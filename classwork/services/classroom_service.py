from __future__ import annotations

import logging
from uuid import UUID

from classwork.models.classroom import Classroom, Enrollment
from classwork.models.principal import Principal
from classwork.repos.classwork_store import ClassworkStore
from classwork.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


async def create_class(store: ClassworkStore, actor: Principal, name: str) -> Classroom:
    if not actor.is_teacher():
        logger.warning("Rejected class creation by non-teacher user=%s", actor.user_id)
        raise ForbiddenError("only teachers can create classes")

    name = name.strip()
    if not name:
        raise ValidationError("class name must be non-empty")

    classroom = Classroom.new(name=name, teacher_id=actor.user_id)
    await store.add_class(classroom)
    logger.info("Created class id=%s teacher=%s", classroom.id, actor.user_id)
    return classroom


async def get_owned_class(
    store: ClassworkStore, actor: Principal, class_id: UUID
) -> Classroom:
    """Return the class if the actor teaches it."""
    classroom = await store.find_class(class_id)
    if classroom is None:
        raise NotFoundError("class not found")
    if classroom.teacher_id != actor.user_id:
        logger.warning(
            "Access denied: user=%s does not teach class=%s", actor.user_id, class_id
        )
        raise ForbiddenError("you do not teach this class")
    return classroom


async def enroll(
    store: ClassworkStore, actor: Principal, class_id: UUID, student_id: str
) -> Enrollment:
    """Enroll a student, or reactivate a deactivated enrollment."""
    await get_owned_class(store, actor, class_id)

    student_id = student_id.strip()
    if not student_id:
        raise ValidationError("student_id must be non-empty")

    existing = await store.find_enrollment(class_id, student_id)
    if existing is not None:
        if existing.active:
            raise ConflictError("student is already enrolled in this class")
        enrollment = await store.set_enrollment_active(class_id, student_id, True)
        logger.info("Re-enrolled student=%s in class=%s", student_id, class_id)
        return enrollment

    enrollment = Enrollment(class_id=class_id, student_id=student_id)
    await store.add_enrollment(enrollment)
    logger.info("Enrolled student=%s in class=%s", student_id, class_id)
    return enrollment


async def set_enrollment_active(
    store: ClassworkStore,
    actor: Principal,
    class_id: UUID,
    student_id: str,
    active: bool,
) -> Enrollment:
    """Switch an enrollment on or off.

    An inactive student keeps their submissions but is treated as not
    enrolled until reactivated.
    """
    await get_owned_class(store, actor, class_id)

    enrollment = await store.find_enrollment(class_id, student_id)
    if enrollment is None:
        raise NotFoundError("student is not enrolled in this class")
    if enrollment.active == active:
        return enrollment

    enrollment = await store.set_enrollment_active(class_id, student_id, active)
    logger.info(
        "Enrollment %s student=%s class=%s",
        "reactivated" if active else "deactivated",
        student_id,
        class_id,
    )
    return enrollment


async def is_enrolled(store: ClassworkStore, class_id: UUID, student_id: str) -> bool:
    enrollment = await store.find_enrollment(class_id, student_id)
    return enrollment is not None and enrollment.active
