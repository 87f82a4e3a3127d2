"""
Task status changes and invoicing.

Status updates only persist the change. The verification flow reacts to it
through the tasks table stream, so it can never fail the update itself.
"""
from .errors import NotFoundError, UnauthorizedError, ValidationError
from .logging import logger
from .models import TaskStatus


def _load_for_actor(task_store, task_id: str, actor) -> dict:
    task = task_store.get(task_id)
    if not task or task.get('deleted'):
        raise NotFoundError(f"Task not found with id of {task_id}")

    if not actor.is_admin and str(task.get('assignedTo')) != actor.user_id:
        raise UnauthorizedError('User not authorized to update this task')
    return task


def update_task_status(task_store, task_id: str, status: str, actor) -> dict:
    """
    Change a task's status (admin or assignee only).

    Returns:
        The updated task item
    """
    if not status:
        raise ValidationError('Please provide a status')
    if status not in TaskStatus.ALL:
        raise ValidationError(f"Invalid status '{status}'")

    task = _load_for_actor(task_store, task_id, actor)
    updated = task_store.update_status(
        task_id, status, actor.user_id, previous_status=task.get('status')
    )
    logger.info(
        f"Task status updated for {task.get('title')} ({task_id}) "
        f"from {task.get('status')} to {status} by {actor.user_id}"
    )
    return updated


def mark_task_invoiced(task_store, task_id: str, invoice_id: str, actor) -> dict:
    """Flag a completed task as invoiced."""
    if not invoice_id:
        raise ValidationError('Please provide an invoiceId')

    task = task_store.get(task_id)
    if not task or task.get('deleted'):
        raise NotFoundError(f"Task not found with id of {task_id}")
    if not actor.is_privileged:
        raise UnauthorizedError('Only admins and managers can invoice tasks')

    if task.get('status') != TaskStatus.COMPLETED:
        raise ValidationError('Only completed tasks can be marked as invoiced')

    updated = task_store.mark_invoiced(task_id, invoice_id, actor.user_id)
    if updated is None:
        raise ValidationError('Only completed tasks can be marked as invoiced')

    logger.info(f"Task marked as invoiced: {task.get('title')} ({task_id}) by {actor.user_id}")
    return updated
