"""PostgreSQL implementation of ClassworkStore."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from classwork.db.tables import (
    AnswerRow,
    ClassroomRow,
    EnrollmentRow,
    QuestionOptionRow,
    QuestionRow,
    SubmissionRow,
    TaskRow,
)
from classwork.models.classroom import Classroom, Enrollment
from classwork.models.submission import (
    IN_PROGRESS,
    Answer,
    AnswerGrade,
    Submission,
    SubmissionStatus,
)
from classwork.models.task import Question, QuestionOption, Task


class PgClassworkStore:
    """Satisfies the ClassworkStore Protocol using PostgreSQL via SQLAlchemy.

    Bound to one request-scoped session.  The workflow commits its own
    transitions through commit(); get_store commits anything left when the
    request ends and rolls back on error.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # --- classes ---

    async def add_class(self, classroom: Classroom) -> None:
        self._session.add(
            ClassroomRow(
                id=classroom.id, name=classroom.name, teacher_id=classroom.teacher_id
            )
        )
        await self._session.flush()

    async def find_class(self, class_id: UUID) -> Classroom | None:
        row = await self._session.get(ClassroomRow, class_id)
        if row is None:
            return None
        return Classroom(id=row.id, name=row.name, teacher_id=row.teacher_id)

    async def add_enrollment(self, enrollment: Enrollment) -> None:
        self._session.add(
            EnrollmentRow(
                class_id=enrollment.class_id,
                student_id=enrollment.student_id,
                active=enrollment.active,
            )
        )
        await self._session.flush()

    async def find_enrollment(
        self, class_id: UUID, student_id: str
    ) -> Enrollment | None:
        row = await self._session.get(EnrollmentRow, (class_id, student_id))
        if row is None:
            return None
        return Enrollment(
            class_id=row.class_id, student_id=row.student_id, active=row.active
        )

    async def set_enrollment_active(
        self, class_id: UUID, student_id: str, active: bool
    ) -> Enrollment:
        row = await self._session.get(EnrollmentRow, (class_id, student_id))
        if row is None:
            raise KeyError("enrollment not found")
        row.active = active
        await self._session.flush()
        return Enrollment(class_id=class_id, student_id=student_id, active=active)

    # --- tasks ---

    async def add_task(self, task: Task) -> None:
        self._session.add(
            TaskRow(
                id=task.id,
                class_id=task.class_id,
                teacher_id=task.teacher_id,
                title=task.title,
                description=task.description,
                points=task.points,
                due_date=task.due_date,
                published=task.published,
                created_at=task.created_at,
            )
        )
        await self._session.flush()

    async def find_task(self, task_id: UUID) -> Task | None:
        stmt = (
            select(TaskRow)
            .where(TaskRow.id == task_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_task(row)

    async def update_task(self, task: Task) -> None:
        stmt = (
            update(TaskRow)
            .where(TaskRow.id == task.id)
            .values(
                title=task.title,
                description=task.description,
                points=task.points,
                due_date=task.due_date,
                published=task.published,
            )
        )
        await self._session.execute(stmt)

    async def delete_task(self, task_id: UUID) -> bool:
        # questions and their options go with it via ON DELETE CASCADE
        result = await self._session.execute(
            delete(TaskRow).where(TaskRow.id == task_id)
        )
        return result.rowcount > 0

    async def list_tasks_by_class(self, class_id: UUID) -> list[Task]:
        stmt = (
            select(TaskRow)
            .where(TaskRow.class_id == class_id)
            .order_by(TaskRow.created_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_task(r) for r in rows]

    # --- questions ---

    async def add_question(self, question: Question) -> None:
        self._session.add(
            QuestionRow(
                id=question.id,
                task_id=question.task_id,
                position=question.position,
                kind=question.kind,
                prompt=question.prompt,
                points=question.points,
            )
        )
        await self._session.flush()
        await self._insert_options(question)

    async def find_question(self, question_id: UUID) -> Question | None:
        stmt = (
            select(QuestionRow)
            .where(QuestionRow.id == question_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        options = await self._options_for([row.id])
        return _row_to_question(row, options.get(row.id, []))

    async def update_question(self, question: Question) -> None:
        stmt = (
            update(QuestionRow)
            .where(QuestionRow.id == question.id)
            .values(
                position=question.position,
                kind=question.kind,
                prompt=question.prompt,
                points=question.points,
            )
        )
        await self._session.execute(stmt)
        await self._session.execute(
            delete(QuestionOptionRow).where(
                QuestionOptionRow.question_id == question.id
            )
        )
        await self._insert_options(question)

    async def delete_question(self, question_id: UUID) -> bool:
        result = await self._session.execute(
            delete(QuestionRow).where(QuestionRow.id == question_id)
        )
        return result.rowcount > 0

    async def find_questions_by_task(self, task_id: UUID) -> list[Question]:
        stmt = (
            select(QuestionRow)
            .where(QuestionRow.task_id == task_id)
            .order_by(QuestionRow.position)
            .execution_options(populate_existing=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        options = await self._options_for([r.id for r in rows])
        return [_row_to_question(r, options.get(r.id, [])) for r in rows]

    async def _insert_options(self, question: Question) -> None:
        for option in question.options:
            self._session.add(
                QuestionOptionRow(
                    id=option.id,
                    question_id=question.id,
                    text=option.text,
                    is_correct=option.is_correct,
                    position=option.position,
                )
            )
        await self._session.flush()

    async def _options_for(
        self, question_ids: list[UUID]
    ) -> dict[UUID, list[QuestionOptionRow]]:
        if not question_ids:
            return {}
        stmt = (
            select(QuestionOptionRow)
            .where(QuestionOptionRow.question_id.in_(question_ids))
            .order_by(QuestionOptionRow.position)
        )
        grouped: dict[UUID, list[QuestionOptionRow]] = {}
        for row in (await self._session.execute(stmt)).scalars():
            grouped.setdefault(row.question_id, []).append(row)
        return grouped

    # --- submissions ---

    async def find_or_create_submission(
        self, task_id: UUID, student_id: str, started_at: datetime
    ) -> tuple[Submission, bool]:
        # Two tabs opening the task at once both reach this INSERT; the
        # unique constraint lets exactly one through and the other re-reads.
        insert_stmt = (
            pg_insert(SubmissionRow)
            .values(
                id=uuid4(),
                task_id=task_id,
                student_id=student_id,
                status=IN_PROGRESS,
                started_at=started_at,
            )
            .on_conflict_do_nothing(constraint="uq_submissions_task_student")
            .returning(SubmissionRow.id)
        )
        inserted_id = (await self._session.execute(insert_stmt)).scalar_one_or_none()

        stmt = (
            select(SubmissionRow)
            .where(
                SubmissionRow.task_id == task_id,
                SubmissionRow.student_id == student_id,
            )
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one()
        return _row_to_submission(row), inserted_id is not None

    async def find_submission(
        self, submission_id: UUID, *, for_update: bool = False
    ) -> Submission | None:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.id == submission_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_submission(row)

    async def list_submissions_by_task(self, task_id: UUID) -> list[Submission]:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.task_id == task_id)
            .order_by(SubmissionRow.started_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_submission(r) for r in rows]

    async def list_submissions_by_student(self, student_id: str) -> list[Submission]:
        stmt = (
            select(SubmissionRow)
            .where(SubmissionRow.student_id == student_id)
            .order_by(SubmissionRow.started_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_submission(r) for r in rows]

    async def update_submission_status(
        self,
        submission_id: UUID,
        status: SubmissionStatus,
        *,
        submitted_at: datetime | None = None,
        total_score: float | None = None,
        teacher_feedback: str | None = None,
        graded_at: datetime | None = None,
        graded_by: str | None = None,
    ) -> Submission:
        changes: dict[str, object] = {
            k: v
            for k, v in (
                ("submitted_at", submitted_at),
                ("total_score", total_score),
                ("teacher_feedback", teacher_feedback),
                ("graded_at", graded_at),
                ("graded_by", graded_by),
            )
            if v is not None
        }
        stmt = (
            update(SubmissionRow)
            .where(SubmissionRow.id == submission_id)
            .values(status=status, **changes)
            .returning(SubmissionRow)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise KeyError("submission not found")
        return _row_to_submission(row)

    # --- answers ---

    async def upsert_answer(
        self,
        submission_id: UUID,
        question_id: UUID,
        *,
        text_response: str | None,
        chosen_option_id: UUID | None,
        updated_at: datetime,
    ) -> Answer:
        stmt = pg_insert(AnswerRow).values(
            id=uuid4(),
            submission_id=submission_id,
            question_id=question_id,
            text_response=text_response,
            chosen_option_id=chosen_option_id,
            updated_at=updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_answers_submission_question",
            set_={
                "text_response": stmt.excluded.text_response,
                "chosen_option_id": stmt.excluded.chosen_option_id,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(AnswerRow)
        row = (
            await self._session.execute(
                stmt.execution_options(populate_existing=True)
            )
        ).scalar_one()
        return _row_to_answer(row)

    async def list_answers_by_submission(self, submission_id: UUID) -> list[Answer]:
        stmt = (
            select(AnswerRow)
            .where(AnswerRow.submission_id == submission_id)
            .execution_options(populate_existing=True)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_answer(r) for r in rows]

    async def update_answer_scores(
        self,
        submission_id: UUID,
        grades: Mapping[UUID, AnswerGrade],
        graded_at: datetime,
    ) -> list[Answer]:
        updated: list[Answer] = []
        for question_id, grade in grades.items():
            stmt = (
                update(AnswerRow)
                .where(
                    AnswerRow.submission_id == submission_id,
                    AnswerRow.question_id == question_id,
                )
                .values(score=grade.score, feedback=grade.feedback, graded_at=graded_at)
                .returning(AnswerRow)
                .execution_options(populate_existing=True)
            )
            row = (await self._session.execute(stmt)).scalar_one_or_none()
            if row is not None:
                updated.append(_row_to_answer(row))
        return updated

    async def commit(self) -> None:
        await self._session.commit()


def _row_to_task(row: TaskRow) -> Task:
    return Task(
        id=row.id,
        class_id=row.class_id,
        teacher_id=row.teacher_id,
        title=row.title,
        description=row.description or "",
        points=row.points,
        due_date=row.due_date,
        published=row.published,
        created_at=row.created_at,
    )


def _row_to_question(row: QuestionRow, options: list[QuestionOptionRow]) -> Question:
    return Question(
        id=row.id,
        task_id=row.task_id,
        position=row.position,
        kind=row.kind,  # type: ignore[arg-type]
        prompt=row.prompt,
        points=row.points,
        options=tuple(
            QuestionOption(
                id=o.id, text=o.text, is_correct=o.is_correct, position=o.position
            )
            for o in options
        ),
    )


def _row_to_submission(row: SubmissionRow) -> Submission:
    return Submission(
        id=row.id,
        task_id=row.task_id,
        student_id=row.student_id,
        status=row.status,  # type: ignore[arg-type]
        started_at=row.started_at,
        submitted_at=row.submitted_at,
        total_score=row.total_score,
        teacher_feedback=row.teacher_feedback,
        graded_at=row.graded_at,
        graded_by=row.graded_by,
    )


def _row_to_answer(row: AnswerRow) -> Answer:
    return Answer(
        id=row.id,
        submission_id=row.submission_id,
        question_id=row.question_id,
        text_response=row.text_response,
        chosen_option_id=row.chosen_option_id,
        score=row.score,
        feedback=row.feedback,
        graded_at=row.graded_at,
        updated_at=row.updated_at,
    )
