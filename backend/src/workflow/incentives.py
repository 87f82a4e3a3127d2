"""
Incentive settlement for completed project verifications.

When a verification task completes, the verifier earns a percentage of every
completed task's amount in the project:

    incentive = amount * verificationIncentivePercentage / 100   (default 1%)

credited to the verifier's bucket for the settlement month and appended to
the incentive ledger. The ledger key is per task, so a task pays a
verification incentive at most once no matter how often settlement runs.
"""
from decimal import Decimal
from typing import Optional

from .config import config
from .errors import NotFoundError, ValidationError
from .logging import logger
from .models import IncentiveType, ProjectPhase, TaskStatus, is_verification_task
from .project_state import move_to
from .utils import month_key, utc_now


def calculate_verification_incentive(amount, percentage=None) -> Decimal:
    """
    Calculate the verification incentive for one task.

    Args:
        amount: Task amount
        percentage: verificationIncentivePercentage; None falls back to the default

    Returns:
        Exact Decimal incentive, no rounding (fractions of a cent are kept)
    """
    if percentage is None:
        percentage = config.DEFAULT_INCENTIVE_PERCENTAGE
    return Decimal(str(amount)) * Decimal(str(percentage)) / Decimal('100')


def incentive_id(task_id: str) -> str:
    return f"{IncentiveType.VERIFICATION}#{task_id}"


class IncentiveSettlement:
    """Settles verification incentives into the ledger."""

    def __init__(self, task_store, ledger, project_store, lock):
        self.tasks = task_store
        self.ledger = ledger
        self.projects = project_store
        self.lock = lock

    def handle_verification_task_completion(self, verification_task_id: str,
                                            completed_by: Optional[str]) -> dict:
        """
        Settle incentives for the project a completed verification task belongs to.

        Returns:
            {'totalVerificationIncentive', 'tasksProcessed', 'tasksSkipped'}

        Raises:
            NotFoundError, ValidationError, LockUnavailableError
        """
        verification_task = self.tasks.get(verification_task_id)
        if not verification_task:
            raise NotFoundError(f"Verification task not found: {verification_task_id}")
        if not is_verification_task(verification_task):
            raise ValidationError(f"Task {verification_task_id} is not a verification task")
        if verification_task.get('status') != TaskStatus.COMPLETED:
            raise ValidationError(f"Verification task {verification_task_id} is not completed")

        completed_by = completed_by or verification_task.get('assignedTo')
        if not completed_by:
            raise ValidationError(f"No verifier recorded for task {verification_task_id}")

        project_id = verification_task['verificationTaskFor']
        with self.lock.hold(project_id):
            result = self._settle(project_id, verification_task_id, completed_by)

        move_to(self.projects, project_id, ProjectPhase.VERIFIED)
        return result

    def _settle(self, project_id: str, verification_task_id: str, completed_by: str) -> dict:
        now = utc_now()
        bucket = month_key(now)

        total = Decimal('0')
        processed = 0
        skipped = 0

        # Index for membership, base table for current status and settled marker
        task_ids = [task['taskId'] for task in self.tasks.list_by_project(project_id)]
        completed_tasks = [
            task for task in self.tasks.get_many(task_ids)
            if task.get('status') == TaskStatus.COMPLETED
        ]

        for task in completed_tasks:
            amount = Decimal(str(task.get('amount') or 0))
            if amount <= 0:
                continue

            if task.get('verificationSettledAt'):
                skipped += 1
                continue

            percentage = task.get('verificationIncentivePercentage')
            incentive = calculate_verification_incentive(amount, percentage)

            record = {
                'incentiveId': incentive_id(task['taskId']),
                'userId': completed_by,
                'taskId': task['taskId'],
                'projectId': project_id,
                'verificationTaskId': verification_task_id,
                'taskAmount': amount,
                'incentiveAmount': incentive,
                'incentivePercentage': Decimal(str(
                    percentage if percentage is not None else config.DEFAULT_INCENTIVE_PERCENTAGE
                )),
                'date': now.isoformat(),
                'month': bucket,
                'incentiveType': IncentiveType.VERIFICATION,
            }

            if not self.ledger.append_once(record):
                logger.info(f"Task {task['taskId']} already settled, skipping")
                skipped += 1
                continue

            total += incentive
            processed += 1
            logger.info(
                f"Verification incentive {incentive} credited to {completed_by} "
                f"for task {task['taskId']} ({bucket})"
            )

        logger.info(
            f"Settled project {project_id}: {processed} tasks, {skipped} skipped, "
            f"total {total} to {completed_by}"
        )
        return {
            'totalVerificationIncentive': total,
            'tasksProcessed': processed,
            'tasksSkipped': skipped,
        }
