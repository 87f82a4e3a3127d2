"""
Staff rotation selector: picks who verifies a finished project.

Eligibility is hard-scoped to the project's departments:
- Tier 1: active verification staff of those departments.
- Tier 2 (only when Tier 1 is empty): any active staff of those departments.
- Nobody assigned to a task of the project may verify it (no self-verification).
- No cross-department fallback: an empty Tier 2 means no verifier.

Among the winning tier, candidates are walked round-robin with a cursor
stored in DynamoDB, skipping the project's previous verifier when another
candidate exists.
"""
from typing import Dict, List, Optional, Set

from .config import config
from .logging import logger
from .models import RotationScope


def staff_sort_key(staff: dict):
    return (str(staff.get('name') or ''), str(staff.get('userId')))


class StaffRotationSelector:
    """
    Usage:
        selector = StaffRotationSelector(projects, tasks, staff, rotation)
        verifier = selector.select(project_id)
        if verifier is None:
            ...  # verification deferred
    """

    def __init__(self, project_store, task_store, staff_directory, rotation_state,
                 scope_mode: str = None, fetch_limit: int = None):
        self.projects = project_store
        self.tasks = task_store
        self.staff = staff_directory
        self.rotation = rotation_state
        self.scope_mode = scope_mode or config.ROTATION_SCOPE
        self.fetch_limit = fetch_limit or config.STAFF_FETCH_LIMIT

    def project_department_ids(self, project: dict) -> List[str]:
        """The project's own department if set, else the distinct departments of its team."""
        if project.get('department'):
            return [str(project['department'])]

        team = [str(member) for member in project.get('team') or []]
        departments = {
            str(member['department'])
            for member in self.staff.get_many(team)
            if member.get('department')
        }
        return sorted(departments)

    def project_assigned_users(self, project_id: str) -> Set[str]:
        """Users assigned to any non-deleted task of the project."""
        return {
            str(task['assignedTo'])
            for task in self.tasks.list_by_project(project_id)
            if task.get('assignedTo') and not task.get('deleted')
        }

    def eligible_candidates(self, project_id: str, department_ids: List[str]):
        """
        Build the winning tier for a project.

        Returns:
            (tier_number, candidates) with candidates sorted by name;
            (None, []) when neither tier has anyone
        """
        excluded = self.project_assigned_users(project_id)
        scope = set(department_ids)

        in_scope = [
            member for member in self.staff.list_active(
                department_ids=department_ids, limit=self.fetch_limit
            )
            if str(member.get('department')) in scope
            and str(member.get('userId')) not in excluded
        ]

        tier_1 = [member for member in in_scope if member.get('verificationStaff')]
        if tier_1:
            return 1, sorted(tier_1, key=staff_sort_key)

        if in_scope:
            logger.info(f"Project {project_id}: no verification staff in scope, falling back to department staff")
            return 2, sorted(in_scope, key=staff_sort_key)

        return None, []

    def rotation_scope(self, department_ids: List[str], tier: int) -> str:
        """Cursor key: one per department set and tier, or a single global cursor."""
        if self.scope_mode == RotationScope.GLOBAL:
            return RotationScope.GLOBAL
        return f"{RotationScope.DEPARTMENT}:{','.join(sorted(department_ids))}:tier{tier}"

    def select(self, project_id: str) -> Optional[Dict]:
        """
        Pick the verifier for a project.

        Returns:
            The chosen staff record, or None if nobody is eligible
        """
        project = self.projects.get(project_id)
        if not project:
            logger.warning(f"Project {project_id} not found while selecting verifier")
            return None

        department_ids = self.project_department_ids(project)
        if not department_ids:
            logger.warning(f"Project {project_id} has no department and no team departments")
            return None

        tier, candidates = self.eligible_candidates(project_id, department_ids)
        if not candidates:
            logger.warning(
                f"No eligible verification staff for project {project_id} "
                f"in departments {department_ids}"
            )
            return None

        chosen = self.select_from_available_staff(
            project_id, candidates, self.rotation_scope(department_ids, tier)
        )
        logger.info(
            f"Selected verifier {chosen.get('name')} ({chosen['userId']}) for project "
            f"{project_id} from tier {tier} ({len(candidates)} candidates)"
        )
        return chosen

    def select_from_available_staff(self, project_id: str, candidates: List[Dict], scope: str) -> Dict:
        """Round-robin over candidates, avoiding the project's last verifier when possible."""
        last_assigned = self.rotation.last_assigned(project_id)
        index = self.rotation.next_cursor(scope, len(candidates))
        chosen = candidates[index]
        if last_assigned and len(candidates) > 1 and str(chosen['userId']) == str(last_assigned):
            chosen = candidates[(index + 1) % len(candidates)]

        self.rotation.record_assignment(project_id, str(chosen['userId']))
        return chosen
