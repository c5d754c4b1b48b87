"""
Instructor task coordination.

Authorization here is ownership-based on top of the `tasks.use` permission:
the assigner owns the task definition, assignees own completion.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import case, func, or_, select

from app.emslab.audit import record_event
from app.emslab.constants import TASK_COMPLETION_MODES, TASK_PRIORITIES, TASK_STATUSES
from app.emslab.models import User
from app.emslab.modules.tasks.models import InstructorTask, TaskAssignee, TaskComment
from app.emslab.utils import normalize_text, optional_text, parse_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

BULK_LIMIT = 50
TASK_FILTERS = ("assigned_to_me", "assigned_by_me", "all")
TASK_SORTS = ("due_date", "created_at", "priority")


class TaskError(ValueError):
    pass


class TaskPermissionError(TaskError):
    """The user is signed in and has tasks.use, but does not own this part of the task."""


# ---------- Ownership ----------
def is_assigner(task: InstructorTask, user: User) -> bool:
    return task.assigned_by_id == user.id


def assignee_row(task: InstructorTask, user: User) -> TaskAssignee | None:
    for a in task.assignees:
        if a.assignee_id == user.id:
            return a
    return None


def is_assignee(task: InstructorTask, user: User) -> bool:
    return task.assigned_to_id == user.id or assignee_row(task, user) is not None


def can_view(task: InstructorTask, user: User) -> bool:
    return is_assigner(task, user) or is_assignee(task, user)


# ---------- List ----------
@dataclass
class TaskRow:
    task: InstructorTask
    comment_count: int
    my_status: str | None  # the user's own assignee status on multi-assign tasks


def _assigned_to_clause(s: "Session", user: User):
    via_assignees = select(TaskAssignee.task_id).where(TaskAssignee.assignee_id == user.id)
    return or_(InstructorTask.assigned_to_id == user.id, InstructorTask.id.in_(via_assignees))


def list_tasks(
    s: "Session",
    user: User,
    *,
    scope: str = "assigned_to_me",
    status: str | None = None,
    priority: str | None = None,
    sort: str = "due_date",
    order: str = "asc",
) -> list[TaskRow]:
    q = s.query(InstructorTask)
    if scope == "assigned_by_me":
        q = q.filter(InstructorTask.assigned_by_id == user.id)
    elif scope == "all":
        q = q.filter(or_(InstructorTask.assigned_by_id == user.id, _assigned_to_clause(s, user)))
    else:
        q = q.filter(_assigned_to_clause(s, user))

    status = normalize_text(status)
    if status:
        q = q.filter(InstructorTask.status == status)
    priority = normalize_text(priority)
    if priority:
        q = q.filter(InstructorTask.priority == priority)

    descending = (order or "").lower() == "desc"
    if sort == "priority":
        rank = case({"high": 3, "medium": 2, "low": 1}, value=InstructorTask.priority, else_=0)
        # asc means most urgent first
        q = q.order_by(rank.asc() if descending else rank.desc(), InstructorTask.created_at.desc())
    elif sort == "created_at":
        col = InstructorTask.created_at
        q = q.order_by(col.desc() if descending else col.asc())
    else:
        col = InstructorTask.due_date
        q = q.order_by(col.is_(None), col.desc() if descending else col.asc(), InstructorTask.created_at.desc())

    tasks = q.all()
    counts: dict[int, int] = {}
    if tasks:
        counts = dict(
            s.query(TaskComment.task_id, func.count(TaskComment.id))
            .filter(TaskComment.task_id.in_([t.id for t in tasks]))
            .group_by(TaskComment.task_id)
            .all()
        )
    rows = []
    for t in tasks:
        mine = assignee_row(t, user)
        rows.append(TaskRow(task=t, comment_count=counts.get(t.id, 0), my_status=mine.status if mine else None))
    return rows


def my_open_tasks(s: "Session", user: User, *, limit: int = 5, today: date | None = None) -> tuple[list[InstructorTask], int]:
    """Dashboard widget: the user's open tasks (soonest due first) and how many are overdue."""
    today = today or date.today()
    q = s.query(InstructorTask).filter(
        _assigned_to_clause(s, user),
        InstructorTask.status.in_(("pending", "in_progress")),
    )
    overdue = q.filter(InstructorTask.due_date < today).count()
    tasks = (
        q.order_by(InstructorTask.due_date.is_(None), InstructorTask.due_date.asc(), InstructorTask.created_at.asc())
        .limit(limit)
        .all()
    )
    return tasks, overdue


# ---------- Create ----------
def validate_task_payload(s: "Session", payload: dict) -> list[str]:
    errors: list[str] = []
    if not normalize_text(payload.get("title")):
        errors.append("Title is required.")

    raw_ids = payload.get("assignee_ids") or []
    if not isinstance(raw_ids, list):
        raw_ids = [raw_ids]
    ids: list[int] = []
    bad_ids = False
    try:
        ids = [int(i) for i in raw_ids if normalize_text(str(i))]
    except (TypeError, ValueError):
        bad_ids = True
        errors.append("Assignee ids must be numeric.")
    if not ids and not bad_ids:
        errors.append("At least one assignee is required.")
    elif ids:
        found = {u.id for u in s.query(User).filter(User.id.in_(ids), User.is_active.is_(True)).all()}
        missing = [i for i in ids if i not in found]
        if missing:
            errors.append("One or more assignees were not found.")

    priority = normalize_text(payload.get("priority"))
    if priority and priority not in TASK_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}")
    mode = normalize_text(payload.get("completion_mode"))
    if mode and mode not in TASK_COMPLETION_MODES:
        errors.append(f"Invalid completion mode. Must be one of: {', '.join(TASK_COMPLETION_MODES)}")
    try:
        parse_date(payload.get("due_date"))
    except (TypeError, ValueError):
        errors.append("Due date must be YYYY-MM-DD.")
    return errors


def create_task(s: "Session", payload: dict, user: User) -> InstructorTask:
    raw_ids = payload.get("assignee_ids") or []
    if not isinstance(raw_ids, list):
        raw_ids = [raw_ids]
    ids: list[int] = []
    for raw in raw_ids:
        if normalize_text(str(raw)) and int(raw) not in ids:
            ids.append(int(raw))

    multi = len(ids) > 1
    mode = normalize_text(payload.get("completion_mode"))
    if multi:
        mode = mode if mode in ("any", "all") else "any"
    else:
        mode = "single"

    now = datetime.utcnow()
    task = InstructorTask(
        title=normalize_text(payload.get("title")),
        description=optional_text(payload.get("description")),
        assigned_by_id=user.id,
        assigned_to_id=None if multi else ids[0],
        due_date=parse_date(payload.get("due_date")),
        priority=normalize_text(payload.get("priority")) or "medium",
        status="pending",
        completion_mode=mode,
        related_link=optional_text(payload.get("related_link")),
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()
    if multi:
        for uid in ids:
            s.add(TaskAssignee(task_id=task.id, assignee_id=uid, status="pending", created_at=now))
        s.flush()
        s.refresh(task)

    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="InstructorTask",
        entity_id=str(task.id),
        metadata={"title": task.title, "assignee_ids": ids, "completion_mode": mode},
    )
    return task


# ---------- Update ----------
def _complete_for(task: InstructorTask, user: User, now: datetime) -> bool:
    """Record `user`'s completion. Returns True when the task as a whole is now complete."""
    if not task.is_multi:
        return True
    mine = assignee_row(task, user)
    if mine and mine.status != "completed":
        mine.status = "completed"
        mine.completed_at = now
    if task.completion_mode == "any":
        return True
    return all(a.status == "completed" for a in task.assignees)


def update_task(s: "Session", task: InstructorTask, payload: dict, user: User) -> InstructorTask:
    """
    Apply a partial update with ownership rules:
    - assigner-only fields are ignored for anyone else
    - only an assignee can complete; only the assigner can cancel
    - completion notes come from an assignee
    """
    assigner = is_assigner(task, user)
    assignee = is_assignee(task, user)
    if not assigner and not assignee:
        raise TaskPermissionError("Access denied")

    updates: dict = {}
    if assigner:
        if "title" in payload:
            title = normalize_text(payload.get("title"))
            if not title:
                raise TaskError("Title is required.")
            updates["title"] = title
        if "description" in payload:
            updates["description"] = optional_text(payload.get("description"))
        if "due_date" in payload:
            try:
                updates["due_date"] = parse_date(payload.get("due_date"))
            except (TypeError, ValueError) as e:
                raise TaskError("Due date must be YYYY-MM-DD.") from e
        if "priority" in payload:
            priority = normalize_text(payload.get("priority"))
            if priority not in TASK_PRIORITIES:
                raise TaskError(f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}")
            updates["priority"] = priority
        if "related_link" in payload:
            updates["related_link"] = optional_text(payload.get("related_link"))

    new_status = normalize_text(payload.get("status")) if "status" in payload else ""
    if new_status:
        if new_status not in TASK_STATUSES:
            raise TaskError(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")
        if new_status == "completed" and not assignee:
            raise TaskPermissionError("Only the assignee can mark a task as completed")
        if new_status == "cancelled" and not assigner:
            raise TaskPermissionError("Only the assigner can cancel a task")

    if "completion_notes" in payload and assignee:
        updates["completion_notes"] = optional_text(payload.get("completion_notes"))

    if not updates and not new_status:
        raise TaskError("No valid fields to update")

    now = datetime.utcnow()
    before_status = task.status
    for key, value in updates.items():
        setattr(task, key, value)

    if new_status == "completed":
        if _complete_for(task, user, now):
            task.status = "completed"
            task.completed_at = now
        elif task.status == "pending":
            task.status = "in_progress"
    elif new_status:
        task.status = new_status
        if new_status != "completed":
            task.completed_at = None

    task.updated_at = now
    action = "task.edit"
    if new_status == "completed":
        action = "task.complete"
    elif new_status == "cancelled":
        action = "task.cancel"
    record_event(
        s,
        actor=user,
        action=action,
        entity_type="InstructorTask",
        entity_id=str(task.id),
        metadata={
            "fields": sorted(updates),
            "status": {"old": before_status, "new": task.status},
        },
    )
    return task


def delete_task(s: "Session", task: InstructorTask, user: User) -> None:
    if not is_assigner(task, user):
        raise TaskPermissionError("Only the assigner can delete a task")
    record_event(
        s,
        actor=user,
        action="task.delete",
        entity_type="InstructorTask",
        entity_id=str(task.id),
        metadata={"title": task.title},
    )
    s.delete(task)


def add_comment(s: "Session", task: InstructorTask, user: User, text: str) -> TaskComment:
    if not can_view(task, user):
        raise TaskPermissionError("Access denied")
    text = normalize_text(text)
    if not text:
        raise TaskError("Comment cannot be empty")
    comment = TaskComment(task_id=task.id, author_id=user.id, comment=text, created_at=datetime.utcnow())
    s.add(comment)
    s.flush()
    record_event(
        s,
        actor=user,
        action="task.comment",
        entity_type="InstructorTask",
        entity_id=str(task.id),
        metadata={"comment_id": comment.id},
    )
    return comment


# ---------- Bulk ----------
def _bulk_ids(ids) -> list[int]:
    if not isinstance(ids, (list, tuple)) or not ids:
        raise TaskError("ids array is required")
    if len(ids) > BULK_LIMIT:
        raise TaskError(f"Maximum {BULK_LIMIT} tasks per request")
    try:
        return list(dict.fromkeys(int(i) for i in ids))
    except (TypeError, ValueError) as e:
        raise TaskError("ids must be integers") from e


def bulk_complete(s: "Session", ids, user: User) -> dict:
    """
    Complete every listed task the user is assigned to.

    Completed/cancelled tasks and tasks the user is not assigned to are skipped.
    Multi-assign tasks follow their mode: "all" only completes once every
    assignee is done.
    """
    task_ids = _bulk_ids(ids)
    tasks = s.query(InstructorTask).filter(InstructorTask.id.in_(task_ids)).all()
    now = datetime.utcnow()
    completed = 0
    recorded = 0
    for task in tasks:
        if not task.is_open or not is_assignee(task, user):
            continue
        recorded += 1
        if _complete_for(task, user, now):
            task.status = "completed"
            task.completed_at = now
            completed += 1
        elif task.status == "pending":
            task.status = "in_progress"
        task.updated_at = now

    result = {"completed": completed, "recorded": recorded, "skipped": len(task_ids) - recorded}
    record_event(
        s,
        actor=user,
        action="task.bulk_complete",
        entity_type="InstructorTask",
        entity_id="bulk",
        metadata={"ids": task_ids, **result},
    )
    return result


def bulk_delete(s: "Session", ids, user: User) -> dict:
    """Delete the listed tasks the user assigned; others are skipped."""
    task_ids = _bulk_ids(ids)
    tasks = (
        s.query(InstructorTask)
        .filter(InstructorTask.id.in_(task_ids), InstructorTask.assigned_by_id == user.id)
        .all()
    )
    for task in tasks:
        s.delete(task)
    result = {"deleted": len(tasks), "skipped": len(task_ids) - len(tasks)}
    record_event(
        s,
        actor=user,
        action="task.bulk_delete",
        entity_type="InstructorTask",
        entity_id="bulk",
        metadata={"ids": [t.id for t in tasks], **result},
    )
    return result
