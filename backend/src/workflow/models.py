"""
Data models and status constants for the project workflow.
Based on the project lifecycle: Level 0 → ... → Level N-1 → AwaitingVerification → Verified → Invoiced
"""


class TaskStatus:
    """Task lifecycle statuses."""
    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'

    ALL = (PENDING, IN_PROGRESS, COMPLETED)


class TaskPriority:
    """Task priorities."""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class ProjectStatus:
    """Project record statuses."""
    ACTIVE = 'active'
    COMPLETED = 'completed'


class ProjectPhase:
    """Unified project phases (forward-only)."""
    IN_PROGRESS = 'in-progress'
    AWAITING_VERIFICATION = 'awaiting-verification'
    VERIFIED = 'verified'
    INVOICED = 'invoiced'


class AdvanceState:
    """Results of a level advancement."""
    ADVANCED = 'advanced'
    READY_FOR_INVOICE = 'ready-for-invoice'


class Role:
    """Actor roles recognised by the workflow."""
    ADMIN = 'admin'
    MANAGER = 'manager'
    STAFF = 'staff'


class UserStatus:
    """Staff directory statuses."""
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class IncentiveType:
    """Incentive ledger entry types."""
    VERIFICATION = 'Verification'


class NotificationType:
    """Notification types pushed to users."""
    VERIFICATION_TASK_ASSIGNED = 'VERIFICATION_TASK_ASSIGNED'


class RotationScope:
    """Scopes of the verification rotation cursor."""
    DEPARTMENT = 'department'
    GLOBAL = 'global'


# Display title of the synthetic verification task
VERIFICATION_TASK_TITLE = 'Project Verification Task'


def is_verification_task(task: dict) -> bool:
    """Verification tasks carry the project they verify in verificationTaskFor."""
    return bool(task.get('verificationTaskFor'))
