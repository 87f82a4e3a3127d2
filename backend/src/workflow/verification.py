"""
Verification task factory.

Creates exactly one verification task per project once all of its tasks are
completed. Uniqueness is enforced by a claim item written in the same
DynamoDB transaction as the task, so concurrent completions of the last two
tasks cannot both create one.
"""
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from .config import config
from .errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .logging import logger
from .models import (
    VERIFICATION_TASK_TITLE,
    NotificationType,
    ProjectPhase,
    TaskPriority,
    TaskStatus,
    is_verification_task,
)
from .project_state import current_phase, is_done, move_to
from .utils import utc_now


class VerificationTaskFactory:
    """Creates and assigns project verification tasks."""

    def __init__(self, task_store, project_store, selector, notifier, lock, due_days: int = None):
        self.tasks = task_store
        self.projects = project_store
        self.selector = selector
        self.notifier = notifier
        self.lock = lock
        self.due_days = due_days or config.VERIFICATION_DUE_DAYS

    def all_tasks_completed(self, project_id: str, include_task_ids=()) -> bool:
        """
        True iff the project has non-deleted work tasks and all of them are completed.

        The by-project index only tells which tasks belong to the project; their
        state is re-read from the base table so a write that has not reached the
        index yet still counts.

        Args:
            project_id: Project to check
            include_task_ids: Tasks known to belong to the project even if the
                index does not list them yet (e.g. the one that just completed)
        """
        task_ids = [task['taskId'] for task in self.tasks.list_by_project(project_id)]
        task_ids.extend(include_task_ids)

        tasks = [
            task for task in self.tasks.get_many(task_ids)
            if task.get('projectId') == project_id
            and not task.get('deleted')
            and not is_verification_task(task)
        ]
        if not tasks:
            return False

        all_completed = all(task.get('status') == TaskStatus.COMPLETED for task in tasks)
        if all_completed:
            logger.info(f"All tasks completed for project {project_id}")
        return all_completed

    def _claimed_task(self, project_id: str):
        """Return (claim, live_task). live_task is None if absent or soft-deleted."""
        claim = self.tasks.get_verification_claim(project_id)
        if not claim:
            return None, None
        task = self.tasks.get(claim['taskId'])
        if task and not task.get('deleted'):
            return claim, task
        return claim, None

    def verification_task_exists(self, project_id: str) -> bool:
        _, task = self._claimed_task(project_id)
        return task is not None

    def create_verification_task(self, project_id: str, created_by: str) -> Optional[dict]:
        """
        Create the project's verification task if it does not exist yet.

        Returns:
            The created task, or None when it already exists, nobody is
            eligible to verify, or a concurrent writer won the claim

        Raises:
            NotFoundError if the project does not exist
        """
        claim, existing = self._claimed_task(project_id)
        if existing:
            logger.info(f"Verification task already exists for project {project_id}")
            return None

        project = self.projects.get(project_id)
        if not project:
            raise NotFoundError(f"Project not found: {project_id}")
        if is_done(project):
            logger.info(f"Project {project_id} is already {current_phase(project)}, no verification needed")
            return None

        staff = self.selector.select(project_id)
        if not staff:
            logger.warning(f"No verification staff available for project {project_id}; verification deferred")
            return None

        now = utc_now()
        project_name = project.get('name', project_id)
        task = {
            'taskId': str(uuid.uuid4()),
            'title': VERIFICATION_TASK_TITLE,
            'description': f"Please verify all completed tasks for project: {project_name}",
            'projectId': project_id,
            'verificationTaskFor': project_id,
            'assignedTo': str(staff['userId']),
            'department': staff.get('department'),
            'status': TaskStatus.PENDING,
            'priority': TaskPriority.HIGH,
            'amount': Decimal('0'),
            'createdBy': created_by,
            'dueDate': (now + timedelta(days=self.due_days)).isoformat(),
            'createdAt': now.isoformat(),
            'deleted': False,
        }

        stale_task_id = claim['taskId'] if claim else None
        if not self.tasks.create_verification_task(task, replaces_task_id=stale_task_id):
            logger.info(f"Verification task for project {project_id} was created concurrently")
            return None

        move_to(self.projects, project_id, ProjectPhase.AWAITING_VERIFICATION)

        self._notify_assignee(task, project_name, created_by)

        logger.info(
            f"Verification task {task['taskId']} created for project {project_id} "
            f"assigned to {staff.get('name')} ({task['assignedTo']})"
        )
        return task

    def _notify_assignee(self, task: dict, project_name: str, created_by: str) -> None:
        """Best-effort: the task stays created whatever happens here."""
        try:
            self.notifier.send_to_user(task['assignedTo'], {
                'sender': created_by,
                'title': 'New Verification Task Assigned',
                'message': f"You have been assigned a verification task for project: {project_name}",
                'type': NotificationType.VERIFICATION_TASK_ASSIGNED,
                'taskId': task['taskId'],
                'projectId': task['projectId'],
            })
        except Exception as e:
            logger.error(f"Error creating notification for verification task {task['taskId']}: {e}")

    def handle_task_completion(self, task_id: str, project_id: str, created_by: str) -> Optional[dict]:
        """
        Continuation of a task reaching 'completed'.

        Runs after the completion was stored, so it never fails it. Losing a
        race (busy project lock, moving rotation cursor) raises ConflictError
        for the caller to retry; any other failure is logged and swallowed.
        """
        try:
            with self.lock.hold(project_id):
                if not self.all_tasks_completed(project_id, include_task_ids=[task_id]):
                    return None
                task = self.create_verification_task(project_id, created_by)
            if task:
                logger.info(
                    f"Verification task created automatically for project {project_id} "
                    f"after task {task_id} completed"
                )
            return task
        except ConflictError:
            raise
        except Exception as e:
            logger.exception(f"Error handling completion of task {task_id} in project {project_id}: {e}")
            return None

    def retrigger(self, project_id: str, actor) -> Optional[dict]:
        """Manually re-run verification creation for a stalled project."""
        if not actor.is_privileged:
            raise UnauthorizedError('Only admins and managers can trigger verification')

        with self.lock.hold(project_id):
            if not self.projects.get(project_id):
                raise NotFoundError(f"Project not found with id of {project_id}")
            if not self.all_tasks_completed(project_id):
                raise ValidationError('Complete all tasks first')
            return self.create_verification_task(project_id, actor.user_id)
