"""
DynamoDB-backed collaborators of the workflow core.

Every store translates failed ConditionExpressions into domain results
(False / None / ConflictError) so callers never parse ClientError codes.
Reads that feed a guard use ConsistentRead where DynamoDB allows it; GSI
queries (tasks by project) are eventually consistent.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from .config import config
from .dynamo import (
    batch_get,
    get_item,
    is_condition_failure,
    query_all,
    scan_limited,
    serialize_item,
    table,
    transact_write,
)
from .errors import ConflictError
from .logging import logger
from .models import ProjectStatus, TaskStatus, UserStatus
from .utils import utc_now


def not_deleted():
    """Filter for soft-delete: attribute missing or explicitly false."""
    return Attr('deleted').not_exists() | Attr('deleted').eq(False)


def verification_claim_id(project_id: str) -> str:
    return f"VERIFICATION#{project_id}"


class TaskStore:
    """Tasks table plus the verification claims kept in the workflow state table."""

    def __init__(self, tasks_table: str = None, state_table: str = None):
        self.tasks_table_name = tasks_table or config.TASKS_TABLE
        self.state_table_name = state_table or config.WORKFLOW_STATE_TABLE
        self.tasks = table(self.tasks_table_name)
        self.state = table(self.state_table_name)

    def get(self, task_id: str) -> Optional[Dict[str, Any]]:
        return get_item(self.tasks, {'taskId': task_id})

    def list_by_project(self, project_id: str) -> List[Dict[str, Any]]:
        """All tasks of a project, deleted ones included."""
        return query_all(
            self.tasks,
            IndexName=config.TASKS_BY_PROJECT_INDEX,
            KeyConditionExpression=Key('projectId').eq(project_id),
        )

    def get_many(self, task_ids: List[str]) -> List[Dict[str, Any]]:
        """Strongly consistent reads of many tasks from the base table."""
        return batch_get(self.tasks_table_name, 'taskId', task_ids, consistent_read=True)

    def count_open_at_level(self, project_id: str, level_index: int) -> int:
        """Count non-deleted tasks at a level whose status is not completed."""
        params = {
            'IndexName': config.TASKS_BY_PROJECT_INDEX,
            'KeyConditionExpression': Key('projectId').eq(project_id),
            'FilterExpression': (
                Attr('levelIndex').eq(level_index)
                & Attr('status').ne(TaskStatus.COMPLETED)
                & not_deleted()
            ),
            'Select': 'COUNT',
        }
        count = 0
        while True:
            response = self.tasks.query(**params)
            count += response.get('Count', 0)
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return count
            params['ExclusiveStartKey'] = last_key

    def get_verification_claim(self, project_id: str) -> Optional[Dict[str, Any]]:
        return get_item(self.state, {'stateId': verification_claim_id(project_id)})

    def create_verification_task(self, task: Dict[str, Any], replaces_task_id: str = None) -> bool:
        """
        Atomically insert a verification task and claim the project for it.

        Args:
            task: Full task item, must carry taskId and verificationTaskFor
            replaces_task_id: Stale (soft-deleted) verification task the claim
                currently points at, if any

        Returns:
            True if the task was created, False if another writer holds the claim
        """
        project_id = task['verificationTaskFor']
        claim = {
            'stateId': verification_claim_id(project_id),
            'projectId': project_id,
            'taskId': task['taskId'],
            'createdAt': task['createdAt'],
        }

        if replaces_task_id:
            claim_condition = {
                'ConditionExpression': 'taskId = :stale',
                'ExpressionAttributeValues': serialize_item({':stale': replaces_task_id}),
            }
        else:
            claim_condition = {'ConditionExpression': 'attribute_not_exists(stateId)'}

        return transact_write([
            {
                'Put': {
                    'TableName': self.state_table_name,
                    'Item': serialize_item(claim),
                    **claim_condition,
                }
            },
            {
                'Put': {
                    'TableName': self.tasks_table_name,
                    'Item': serialize_item(task),
                    'ConditionExpression': 'attribute_not_exists(taskId)',
                }
            },
        ])

    def update_status(self, task_id: str, status: str, updated_by: str,
                      previous_status: str = None) -> Dict[str, Any]:
        """Set a task's status, stamping completedAt / startedAt. Returns the new item."""
        timestamp = utc_now().isoformat()
        update_expr = 'SET #status = :status, updatedBy = :by, updatedAt = :ts'
        values = {':status': status, ':by': updated_by, ':ts': timestamp}

        if status == TaskStatus.COMPLETED:
            update_expr += ', completedAt = :ts'
        elif status == TaskStatus.IN_PROGRESS and previous_status == TaskStatus.PENDING:
            update_expr += ', startedAt = :ts'

        response = self.tasks.update_item(
            Key={'taskId': task_id},
            UpdateExpression=update_expr,
            ConditionExpression='attribute_exists(taskId)',
            ExpressionAttributeNames={'#status': 'status'},
            ExpressionAttributeValues=values,
            ReturnValues='ALL_NEW',
        )
        return response.get('Attributes', {})

    def mark_invoiced(self, task_id: str, invoice_id: str, updated_by: str) -> Optional[Dict[str, Any]]:
        """Flag a completed task as invoiced. Returns None if the task is not completed."""
        try:
            response = self.tasks.update_item(
                Key={'taskId': task_id},
                UpdateExpression='SET invoiced = :true, invoiceId = :invoice, invoicedAt = :ts, updatedBy = :by',
                ConditionExpression='#status = :completed',
                ExpressionAttributeNames={'#status': 'status'},
                ExpressionAttributeValues={
                    ':true': True,
                    ':invoice': invoice_id,
                    ':ts': utc_now().isoformat(),
                    ':by': updated_by,
                    ':completed': TaskStatus.COMPLETED,
                },
                ReturnValues='ALL_NEW',
            )
        except ClientError as e:
            if is_condition_failure(e):
                return None
            raise
        return response.get('Attributes', {})


class ProjectStore:
    """Projects table. Level and phase writes are conditional on the expected state."""

    def __init__(self, projects_table: str = None):
        self.projects = table(projects_table or config.PROJECTS_TABLE)

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        return get_item(self.projects, {'projectId': project_id})

    def advance_level(self, project_id: str, expected_index: int) -> int:
        """Move currentLevelIndex from expected_index to expected_index + 1."""
        next_index = expected_index + 1
        try:
            self.projects.update_item(
                Key={'projectId': project_id},
                UpdateExpression='SET currentLevelIndex = :next, updatedAt = :ts',
                ConditionExpression='currentLevelIndex = :expected',
                ExpressionAttributeValues={
                    ':next': next_index,
                    ':expected': expected_index,
                    ':ts': utc_now().isoformat(),
                },
            )
        except ClientError as e:
            if is_condition_failure(e):
                raise ConflictError(f"Project {project_id} is no longer at level {expected_index}")
            raise
        return next_index

    def complete(self, project_id: str, expected_index: int) -> None:
        """Mark the project completed while it still sits on its last level."""
        try:
            self.projects.update_item(
                Key={'projectId': project_id},
                UpdateExpression='SET #status = :completed, completedAt = :ts, updatedAt = :ts',
                ConditionExpression='currentLevelIndex = :expected',
                ExpressionAttributeNames={'#status': 'status'},
                ExpressionAttributeValues={
                    ':completed': ProjectStatus.COMPLETED,
                    ':expected': expected_index,
                    ':ts': utc_now().isoformat(),
                },
            )
        except ClientError as e:
            if is_condition_failure(e):
                raise ConflictError(f"Project {project_id} is no longer at level {expected_index}")
            raise

    def set_phase(self, project_id: str, phase: str, allowed_from: List[str],
                  allow_missing: bool = False) -> bool:
        """
        Move a project to phase if its current phase is one of allowed_from.

        Returns:
            True if the phase was written, False if the condition rejected it
        """
        names = {'#phase': 'phase'}
        values = {':phase': phase, ':ts': utc_now().isoformat()}
        clauses = []
        for i, previous in enumerate(allowed_from):
            values[f':from{i}'] = previous
            clauses.append(f'#phase = :from{i}')
        if allow_missing:
            clauses.append('attribute_not_exists(#phase)')

        try:
            self.projects.update_item(
                Key={'projectId': project_id},
                UpdateExpression='SET #phase = :phase, updatedAt = :ts',
                ConditionExpression=f"attribute_exists(projectId) AND ({' OR '.join(clauses)})",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if is_condition_failure(e):
                return False
            raise
        return True


class StaffDirectory:
    """Users table."""

    def __init__(self, users_table: str = None):
        self.users_table_name = users_table or config.USERS_TABLE
        self.users = table(self.users_table_name)

    def list_active(self, department_ids: List[str] = None, verification_staff: bool = None,
                    limit: int = None) -> List[Dict[str, Any]]:
        """Active users, optionally scoped to departments / the verificationStaff flag."""
        filter_expr = Attr('status').eq(UserStatus.ACTIVE)
        if department_ids:
            filter_expr = filter_expr & Attr('department').is_in(list(department_ids))
        if verification_staff is not None:
            filter_expr = filter_expr & Attr('verificationStaff').eq(verification_staff)

        return scan_limited(
            self.users,
            limit or config.STAFF_FETCH_LIMIT,
            FilterExpression=filter_expr,
        )

    def get_many(self, user_ids: List[str]) -> List[Dict[str, Any]]:
        return batch_get(self.users_table_name, 'userId', user_ids)


class RotationState:
    """Rotation cursors and last-assignee history, shared by every instance."""

    def __init__(self, state_table: str = None, attempts: int = None):
        self.state = table(state_table or config.WORKFLOW_STATE_TABLE)
        self.attempts = attempts or config.LOCK_ACQUIRE_ATTEMPTS

    def next_cursor(self, scope: str, size: int) -> int:
        """
        Take the scope's next position in a candidate list of the given size.

        The stored cursor wraps modulo the size seen by each call, so the walk
        stays in step when the list grows or shrinks between calls. The write
        is conditional on the value read and retried on contention.

        Returns:
            Index into the candidate list, 0 <= index < size

        Raises:
            ConflictError if concurrent writers keep moving the cursor
        """
        key = {'stateId': f"ROTATION#{scope}"}
        for _ in range(self.attempts):
            item = get_item(self.state, key)
            current = int(item.get('cursor', 0)) if item else 0
            index = current % size

            if item and 'cursor' in item:
                condition = '#cursor = :current'
                values = {':next': (index + 1) % size, ':current': current}
            else:
                condition = 'attribute_not_exists(#cursor)'
                values = {':next': (index + 1) % size}

            try:
                self.state.update_item(
                    Key=key,
                    UpdateExpression='SET #cursor = :next, updatedAt = :ts',
                    ConditionExpression=condition,
                    ExpressionAttributeNames={'#cursor': 'cursor'},
                    ExpressionAttributeValues={**values, ':ts': utc_now().isoformat()},
                )
                return index
            except ClientError as e:
                if not is_condition_failure(e):
                    raise
                logger.info(f"Rotation cursor {scope} moved concurrently, re-reading")

        raise ConflictError(f"Rotation cursor {scope} is being updated by another request")

    def last_assigned(self, project_id: str) -> Optional[str]:
        item = get_item(self.state, {'stateId': f"HISTORY#{project_id}"})
        return item.get('lastAssignedUser') if item else None

    def record_assignment(self, project_id: str, user_id: str) -> None:
        self.state.put_item(Item={
            'stateId': f"HISTORY#{project_id}",
            'projectId': project_id,
            'lastAssignedUser': user_id,
            'updatedAt': utc_now().isoformat(),
        })


class IncentiveLedger:
    """Append-only incentive records plus the users' monthly buckets."""

    def __init__(self, incentives_table: str = None, users_table: str = None,
                 tasks_table: str = None):
        self.incentives_table_name = incentives_table or config.INCENTIVES_TABLE
        self.users_table_name = users_table or config.USERS_TABLE
        self.tasks_table_name = tasks_table or config.TASKS_TABLE
        self.users = table(self.users_table_name)

    def append_once(self, record: Dict[str, Any]) -> bool:
        """
        Append a record, credit the user's month bucket and stamp the task, atomically.

        Returns:
            True if credited, False if a record with this incentiveId already exists
        """
        user_id = record['userId']
        amount = Decimal(str(record['incentiveAmount']))

        # Nested SET below needs the map to exist
        self.users.update_item(
            Key={'userId': user_id},
            UpdateExpression='SET incentive = if_not_exists(incentive, :empty)',
            ExpressionAttributeValues={':empty': {}},
        )

        return transact_write([
            {
                'Put': {
                    'TableName': self.incentives_table_name,
                    'Item': serialize_item(record),
                    'ConditionExpression': 'attribute_not_exists(incentiveId)',
                }
            },
            {
                'Update': {
                    'TableName': self.users_table_name,
                    'Key': serialize_item({'userId': user_id}),
                    'UpdateExpression': 'SET incentive.#month = if_not_exists(incentive.#month, :zero) + :amount',
                    'ExpressionAttributeNames': {'#month': record['month']},
                    'ExpressionAttributeValues': serialize_item({
                        ':zero': Decimal('0'),
                        ':amount': amount,
                    }),
                }
            },
            {
                'Update': {
                    'TableName': self.tasks_table_name,
                    'Key': serialize_item({'taskId': record['taskId']}),
                    'UpdateExpression': 'SET verificationSettledAt = :ts, verificationSettledBy = :by',
                    'ExpressionAttributeValues': serialize_item({
                        ':ts': record['date'],
                        ':by': user_id,
                    }),
                }
            },
        ])
