"""
Per-project advisory lock backed by a lease item in the workflow state table.

Serializes {check-all-completed -> create-verification-task} and
{settle-incentives} per project id across every Lambda instance.
The lease expires after LOCK_TTL_SECONDS so a crashed holder cannot
block the project forever.
"""
import time
import uuid
from contextlib import contextmanager

from botocore.exceptions import ClientError

from .config import config
from .dynamo import is_condition_failure, table
from .errors import LockUnavailableError
from .logging import logger


class ProjectLock:
    """Lease-based lock keyed by project id."""

    def __init__(self, state_table: str = None, ttl_seconds: int = None,
                 attempts: int = None, retry_delay: float = None):
        self.state = table(state_table or config.WORKFLOW_STATE_TABLE)
        self.ttl_seconds = ttl_seconds or config.LOCK_TTL_SECONDS
        self.attempts = attempts or config.LOCK_ACQUIRE_ATTEMPTS
        self.retry_delay = config.LOCK_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    def acquire(self, project_id: str) -> str:
        """
        Take the lease for a project.

        Returns:
            Owner token to pass to release()

        Raises:
            LockUnavailableError if the lease stays held after all attempts
        """
        owner = str(uuid.uuid4())
        for attempt in range(1, self.attempts + 1):
            now = int(time.time())
            try:
                self.state.put_item(
                    Item={
                        'stateId': f"LOCK#{project_id}",
                        'projectId': project_id,
                        'owner': owner,
                        'expiresAt': now + self.ttl_seconds,
                    },
                    ConditionExpression='attribute_not_exists(stateId) OR expiresAt < :now',
                    ExpressionAttributeValues={':now': now},
                )
                return owner
            except ClientError as e:
                if not is_condition_failure(e):
                    raise
                logger.info(f"Lock for project {project_id} busy (attempt {attempt}/{self.attempts})")
                if attempt < self.attempts:
                    time.sleep(self.retry_delay)

        raise LockUnavailableError(f"Project {project_id} is being processed by another request")

    def release(self, project_id: str, owner: str) -> None:
        """Drop the lease if we still own it."""
        try:
            self.state.delete_item(
                Key={'stateId': f"LOCK#{project_id}"},
                ConditionExpression='#owner = :owner',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':owner': owner},
            )
        except ClientError as e:
            if not is_condition_failure(e):
                raise
            logger.warning(f"Lock for project {project_id} expired before release")

    @contextmanager
    def hold(self, project_id: str):
        owner = self.acquire(project_id)
        try:
            yield owner
        finally:
            self.release(project_id, owner)
