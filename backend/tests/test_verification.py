"""
Tests for the verification task factory.
"""
from unittest.mock import patch

import pytest

from workflow.errors import LockUnavailableError, NotFoundError, UnauthorizedError, ValidationError
from workflow.models import (
    VERIFICATION_TASK_TITLE,
    NotificationType,
    ProjectPhase,
    TaskPriority,
    TaskStatus,
)
from workflow.verification import VerificationTaskFactory


@pytest.fixture
def audit_project(project_store, task_store, staff_directory):
    """projectP: three completed tasks in Audit, two verification staff free to verify."""
    project_store.add('projectP', levels=[('Audit', 'w1')], department='Audit', name='Project P')
    for i, worker in enumerate(('w1', 'w2', 'w3')):
        task_store.add(f"t{i}", 'projectP', status=TaskStatus.COMPLETED, assigned_to=worker, amount=100)
    staff_directory.add('S1', 'Audit', verification_staff=True)
    staff_directory.add('S2', 'Audit', verification_staff=True)
    return 'projectP'


class TestAllTasksCompleted:

    def test_empty_project_is_not_complete(self, factory, project_store):
        project_store.add('p1', levels=[('Audit', 'x')])
        assert factory.all_tasks_completed('p1') is False

    def test_open_task_blocks(self, factory, task_store):
        task_store.add('t1', 'p1', status=TaskStatus.COMPLETED)
        task_store.add('t2', 'p1', status=TaskStatus.IN_PROGRESS)
        assert factory.all_tasks_completed('p1') is False

    def test_deleted_and_verification_tasks_ignored(self, factory, task_store):
        task_store.add('t1', 'p1', status=TaskStatus.COMPLETED)
        task_store.add('t2', 'p1', status=TaskStatus.PENDING, deleted=True)
        task_store.add('v1', 'p1', status=TaskStatus.PENDING, verificationTaskFor='p1')
        assert factory.all_tasks_completed('p1') is True


class TestCreateVerificationTask:

    def test_audit_scenario_assigns_one_verifier_once(self, factory, task_store, audit_project):
        task = factory.create_verification_task(audit_project, 'w3')

        assert task['assignedTo'] in {'S1', 'S2'}
        assert task['title'] == VERIFICATION_TASK_TITLE
        assert task['verificationTaskFor'] == audit_project
        assert task['status'] == TaskStatus.PENDING
        assert task['priority'] == TaskPriority.HIGH
        assert task['description'] == 'Please verify all completed tasks for project: Project P'

        assert factory.create_verification_task(audit_project, 'w3') is None
        assert len(task_store.verification_tasks(audit_project)) == 1

    def test_exists_only_while_task_is_live(self, factory, task_store, audit_project):
        assert factory.verification_task_exists(audit_project) is False

        task = factory.create_verification_task(audit_project, 'w3')
        assert factory.verification_task_exists(audit_project) is True

        task_store.tasks[task['taskId']]['deleted'] = True
        assert factory.verification_task_exists(audit_project) is False

    def test_phase_moves_to_awaiting_verification(self, factory, project_store, audit_project):
        factory.create_verification_task(audit_project, 'w3')

        assert project_store.projects[audit_project]['phase'] == ProjectPhase.AWAITING_VERIFICATION

    def test_assignee_is_notified(self, factory, notifier, audit_project):
        task = factory.create_verification_task(audit_project, 'w3')

        assert len(notifier.sent) == 1
        user_id, payload = notifier.sent[0]
        assert user_id == task['assignedTo']
        assert payload['type'] == NotificationType.VERIFICATION_TASK_ASSIGNED
        assert payload['taskId'] == task['taskId']
        assert payload['sender'] == 'w3'

    def test_notifier_failure_keeps_task(self, task_store, project_store, selector, lock,
                                         failing_notifier, audit_project):
        factory = VerificationTaskFactory(
            task_store, project_store, selector, failing_notifier, lock, due_days=7
        )

        task = factory.create_verification_task(audit_project, 'w3')

        assert task is not None
        assert task_store.verification_tasks(audit_project)[0]['taskId'] == task['taskId']

    def test_concurrent_creation_yields_one_task(self, factory, task_store, audit_project):
        # both callers pass the existence check before either writes
        with patch.object(factory, '_claimed_task', return_value=(None, None)):
            first = factory.create_verification_task(audit_project, 'w1')
            second = factory.create_verification_task(audit_project, 'w2')

        assert first is not None
        assert second is None
        assert len(task_store.verification_tasks(audit_project)) == 1

    def test_soft_deleted_verification_task_is_replaced(self, factory, task_store, audit_project):
        old = factory.create_verification_task(audit_project, 'w3')
        task_store.tasks[old['taskId']]['deleted'] = True

        new = factory.create_verification_task(audit_project, 'w3')

        assert new is not None
        assert new['taskId'] != old['taskId']
        assert task_store.claims[audit_project]['taskId'] == new['taskId']
        assert [t['taskId'] for t in task_store.verification_tasks(audit_project)] == [new['taskId']]

    def test_no_eligible_staff_returns_none(self, factory, project_store, task_store, notifier):
        project_store.add('p1', levels=[('Audit', 'w1')], department='Audit')
        task_store.add('t1', 'p1', status=TaskStatus.COMPLETED, assigned_to='w1')

        assert factory.create_verification_task('p1', 'w1') is None
        assert task_store.verification_tasks('p1') == []
        assert 'phase' not in project_store.projects['p1']
        assert notifier.sent == []

    def test_missing_project(self, factory):
        with pytest.raises(NotFoundError):
            factory.create_verification_task('missing', 'w1')

    @pytest.mark.parametrize('phase', [ProjectPhase.VERIFIED, ProjectPhase.INVOICED])
    def test_done_project_gets_no_new_task(self, factory, project_store, task_store, notifier,
                                           audit_project, phase):
        project_store.projects[audit_project]['phase'] = phase

        assert factory.create_verification_task(audit_project, 'w3') is None
        assert task_store.verification_tasks(audit_project) == []
        assert project_store.projects[audit_project]['phase'] == phase
        assert notifier.sent == []

    def test_due_date_follows_configured_days(self, factory, audit_project):
        task = factory.create_verification_task(audit_project, 'w3')

        assert task['dueDate'] > task['createdAt']


class TestHandleTaskCompletion:

    def test_creates_when_last_task_completes(self, factory, task_store, lock, audit_project):
        task = factory.handle_task_completion('t2', audit_project, 'w3')

        assert task is not None
        assert lock.acquired == [audit_project]
        assert lock.held == set()

    def test_open_tasks_mean_nothing_to_do(self, factory, task_store, audit_project):
        task_store.tasks['t1']['status'] = TaskStatus.IN_PROGRESS

        assert factory.handle_task_completion('t2', audit_project, 'w3') is None
        assert task_store.verification_tasks(audit_project) == []

    def test_busy_lock_is_raised_for_retry(self, factory, lock, task_store, audit_project):
        lock.held.add(audit_project)

        with pytest.raises(LockUnavailableError):
            factory.handle_task_completion('t2', audit_project, 'w3')
        assert task_store.verification_tasks(audit_project) == []

        lock.held.discard(audit_project)
        assert factory.handle_task_completion('t2', audit_project, 'w3') is not None

    def test_stale_index_copy_of_triggering_task(self, factory, task_store, audit_project):
        # the by-project index still shows t2 as it was before completing
        stale = task_store.list_by_project(audit_project)
        for task in stale:
            if task['taskId'] == 't2':
                task['status'] = TaskStatus.IN_PROGRESS

        with patch.object(task_store, 'list_by_project', return_value=stale):
            task = factory.handle_task_completion('t2', audit_project, 'w3')

        assert task is not None
        assert len(task_store.verification_tasks(audit_project)) == 1

    def test_task_missing_from_index_still_checked(self, factory, task_store, audit_project):
        listed = [t for t in task_store.list_by_project(audit_project) if t['taskId'] != 't2']
        task_store.tasks['t2']['status'] = TaskStatus.IN_PROGRESS

        with patch.object(task_store, 'list_by_project', return_value=listed):
            assert factory.all_tasks_completed(audit_project, include_task_ids=['t2']) is False

    def test_errors_are_swallowed(self, factory, project_store, audit_project):
        with patch.object(project_store, 'get', side_effect=RuntimeError('boom')):
            assert factory.handle_task_completion('t2', audit_project, 'w3') is None


class TestRetrigger:

    def test_staff_cannot_retrigger(self, factory, staff_actor, audit_project):
        with pytest.raises(UnauthorizedError):
            factory.retrigger(audit_project, staff_actor('w1'))

    def test_incomplete_project_rejected(self, factory, task_store, manager, audit_project):
        task_store.tasks['t0']['status'] = TaskStatus.PENDING

        with pytest.raises(ValidationError) as exc:
            factory.retrigger(audit_project, manager)
        assert exc.value.message == 'Complete all tasks first'

    def test_missing_project(self, factory, admin):
        with pytest.raises(NotFoundError):
            factory.retrigger('missing', admin)

    def test_recovers_stalled_project(self, factory, staff_directory, project_store, task_store, admin):
        project_store.add('p1', levels=[('Audit', 'w1')], department='Audit')
        task_store.add('t1', 'p1', status=TaskStatus.COMPLETED, assigned_to='w1')
        assert factory.handle_task_completion('t1', 'p1', 'w1') is None

        staff_directory.add('late-hire', 'Audit', verification_staff=True)
        task = factory.retrigger('p1', admin)

        assert task['assignedTo'] == 'late-hire'
        assert task['createdBy'] == 'admin-1'
        assert factory.retrigger('p1', admin) is None
