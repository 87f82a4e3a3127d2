"""
Shared fixtures: in-memory stores with the same conditional semantics as the
DynamoDB stores, so the workflow core can be exercised without AWS.
"""
import copy
import os
import sys
from contextlib import contextmanager
from decimal import Decimal

import pytest

# Table names must be set before any workflow module reads config
os.environ.setdefault('AWS_REGION', 'us-east-1')
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')
os.environ.setdefault('PROJECTS_TABLE', 'projects')
os.environ.setdefault('TASKS_TABLE', 'tasks')
os.environ.setdefault('USERS_TABLE', 'users')
os.environ.setdefault('INCENTIVES_TABLE', 'incentives')
os.environ.setdefault('NOTIFICATIONS_TABLE', 'notifications')
os.environ.setdefault('WORKFLOW_STATE_TABLE', 'workflow-state')

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from workflow.auth import Actor  # noqa: E402
from workflow.errors import ConflictError, LockUnavailableError  # noqa: E402
from workflow.incentives import IncentiveSettlement  # noqa: E402
from workflow.levels import LevelAdvancer  # noqa: E402
from workflow.models import Role, TaskStatus, UserStatus  # noqa: E402
from workflow.rotation import StaffRotationSelector  # noqa: E402
from workflow.verification import VerificationTaskFactory  # noqa: E402


class InMemoryTaskStore:
    def __init__(self):
        self.tasks = {}
        self.claims = {}

    def add(self, task_id, project_id, status=TaskStatus.PENDING, level_index=0,
            assigned_to=None, amount=0, deleted=False, **extra):
        task = {
            'taskId': task_id,
            'projectId': project_id,
            'levelIndex': level_index,
            'status': status,
            'assignedTo': assigned_to,
            'amount': Decimal(str(amount)),
            'deleted': deleted,
            'title': extra.pop('title', f"Task {task_id}"),
            **extra,
        }
        self.tasks[task_id] = task
        return task

    def get(self, task_id):
        return copy.deepcopy(self.tasks.get(task_id))

    def list_by_project(self, project_id):
        return [copy.deepcopy(t) for t in self.tasks.values() if t.get('projectId') == project_id]

    def get_many(self, task_ids):
        return [copy.deepcopy(self.tasks[t]) for t in dict.fromkeys(task_ids) if t in self.tasks]

    def count_open_at_level(self, project_id, level_index):
        return sum(
            1 for t in self.tasks.values()
            if t.get('projectId') == project_id
            and t.get('levelIndex') == level_index
            and t.get('status') != TaskStatus.COMPLETED
            and not t.get('deleted')
        )

    def get_verification_claim(self, project_id):
        return copy.deepcopy(self.claims.get(project_id))

    def create_verification_task(self, task, replaces_task_id=None):
        project_id = task['verificationTaskFor']
        claim = self.claims.get(project_id)
        if replaces_task_id:
            if not claim or claim['taskId'] != replaces_task_id:
                return False
        elif claim:
            return False
        if task['taskId'] in self.tasks:
            return False

        self.claims[project_id] = {
            'stateId': f"VERIFICATION#{project_id}",
            'projectId': project_id,
            'taskId': task['taskId'],
            'createdAt': task['createdAt'],
        }
        self.tasks[task['taskId']] = copy.deepcopy(task)
        return True

    def update_status(self, task_id, status, updated_by, previous_status=None):
        task = self.tasks[task_id]
        task['status'] = status
        task['updatedBy'] = updated_by
        if status == TaskStatus.COMPLETED:
            task['completedAt'] = 'now'
        elif status == TaskStatus.IN_PROGRESS and previous_status == TaskStatus.PENDING:
            task['startedAt'] = 'now'
        return copy.deepcopy(task)

    def mark_invoiced(self, task_id, invoice_id, updated_by):
        task = self.tasks[task_id]
        if task.get('status') != TaskStatus.COMPLETED:
            return None
        task.update({'invoiced': True, 'invoiceId': invoice_id, 'updatedBy': updated_by})
        return copy.deepcopy(task)

    def verification_tasks(self, project_id):
        return [
            t for t in self.tasks.values()
            if t.get('verificationTaskFor') == project_id and not t.get('deleted')
        ]


class InMemoryProjectStore:
    def __init__(self):
        self.projects = {}

    def add(self, project_id, levels=None, **extra):
        project = {
            'projectId': project_id,
            'name': extra.pop('name', f"Project {project_id}"),
            'assignedTo': [
                {'department': dept, 'user': user, 'levelIndex': i}
                for i, (dept, user) in enumerate(levels or [])
            ],
            'currentLevelIndex': 0,
            'team': extra.pop('team', []),
            **extra,
        }
        self.projects[project_id] = project
        return project

    def get(self, project_id):
        return copy.deepcopy(self.projects.get(project_id))

    def advance_level(self, project_id, expected_index):
        project = self.projects[project_id]
        if project['currentLevelIndex'] != expected_index:
            raise ConflictError(f"Project {project_id} is no longer at level {expected_index}")
        project['currentLevelIndex'] = expected_index + 1
        return expected_index + 1

    def complete(self, project_id, expected_index):
        project = self.projects[project_id]
        if project['currentLevelIndex'] != expected_index:
            raise ConflictError(f"Project {project_id} is no longer at level {expected_index}")
        project['status'] = 'completed'

    def set_phase(self, project_id, phase, allowed_from, allow_missing=False):
        project = self.projects.get(project_id)
        if project is None:
            return False
        current = project.get('phase')
        if (current is None and allow_missing) or current in allowed_from:
            project['phase'] = phase
            return True
        return False


class InMemoryStaffDirectory:
    def __init__(self):
        self.users = {}
        self.list_calls = []

    def add(self, user_id, department, verification_staff=False, status=UserStatus.ACTIVE, name=None):
        self.users[user_id] = {
            'userId': user_id,
            'name': name or user_id,
            'department': department,
            'verificationStaff': verification_staff,
            'status': status,
        }

    def list_active(self, department_ids=None, verification_staff=None, limit=None):
        self.list_calls.append({'department_ids': department_ids, 'limit': limit})
        result = [
            copy.deepcopy(u) for u in self.users.values()
            if u['status'] == UserStatus.ACTIVE
            and (not department_ids or u['department'] in department_ids)
            and (verification_staff is None or u['verificationStaff'] == verification_staff)
        ]
        return result[:limit] if limit else result

    def get_many(self, user_ids):
        return [copy.deepcopy(self.users[u]) for u in user_ids if u in self.users]


class InMemoryRotationState:
    def __init__(self):
        self.cursors = {}
        self.history = {}

    def next_cursor(self, scope, size):
        index = self.cursors.get(scope, 0) % size
        self.cursors[scope] = (index + 1) % size
        return index

    def last_assigned(self, project_id):
        return self.history.get(project_id)

    def record_assignment(self, project_id, user_id):
        self.history[project_id] = user_id


class InMemoryLedger:
    def __init__(self, task_store):
        self.task_store = task_store
        self.records = {}
        self.buckets = {}

    def append_once(self, record):
        if record['incentiveId'] in self.records:
            return False
        self.records[record['incentiveId']] = copy.deepcopy(record)
        user_buckets = self.buckets.setdefault(record['userId'], {})
        user_buckets[record['month']] = user_buckets.get(record['month'], Decimal('0')) + record['incentiveAmount']
        task = self.task_store.tasks[record['taskId']]
        task['verificationSettledAt'] = record['date']
        task['verificationSettledBy'] = record['userId']
        return True


class InMemoryLock:
    def __init__(self):
        self.held = set()
        self.acquired = []

    @contextmanager
    def hold(self, project_id):
        if project_id in self.held:
            raise LockUnavailableError(f"Project {project_id} is being processed by another request")
        self.held.add(project_id)
        self.acquired.append(project_id)
        try:
            yield 'owner'
        finally:
            self.held.discard(project_id)


class RecordingNotifier:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_to_user(self, user_id, payload):
        if self.fail:
            raise RuntimeError('notifier down')
        self.sent.append((user_id, payload))
        return True


@pytest.fixture
def task_store():
    return InMemoryTaskStore()


@pytest.fixture
def project_store():
    return InMemoryProjectStore()


@pytest.fixture
def staff_directory():
    return InMemoryStaffDirectory()


@pytest.fixture
def rotation_state():
    return InMemoryRotationState()


@pytest.fixture
def lock():
    return InMemoryLock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger(task_store):
    return InMemoryLedger(task_store)


@pytest.fixture
def advancer(project_store, task_store):
    return LevelAdvancer(project_store, task_store)


@pytest.fixture
def selector(project_store, task_store, staff_directory, rotation_state):
    return StaffRotationSelector(
        project_store, task_store, staff_directory, rotation_state,
        scope_mode='department', fetch_limit=200,
    )


@pytest.fixture
def factory(task_store, project_store, selector, notifier, lock):
    return VerificationTaskFactory(task_store, project_store, selector, notifier, lock, due_days=7)


@pytest.fixture
def settlement(task_store, ledger, project_store, lock):
    return IncentiveSettlement(task_store, ledger, project_store, lock)


@pytest.fixture
def admin():
    return Actor(user_id='admin-1', role=Role.ADMIN)


@pytest.fixture
def manager():
    return Actor(user_id='manager-1', role=Role.MANAGER)


@pytest.fixture
def staff_actor():
    def make(user_id):
        return Actor(user_id=user_id, role=Role.STAFF)
    return make


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)
