"""
Default wiring of the workflow components against DynamoDB.
Handlers build their collaborators here once per Lambda container.
"""
from .incentives import IncentiveSettlement
from .levels import LevelAdvancer
from .locks import ProjectLock
from .notifications import NotificationDispatcher
from .rotation import StaffRotationSelector
from .stores import IncentiveLedger, ProjectStore, RotationState, StaffDirectory, TaskStore
from .verification import VerificationTaskFactory


def build_level_advancer() -> LevelAdvancer:
    return LevelAdvancer(ProjectStore(), TaskStore())


def build_verification_factory() -> VerificationTaskFactory:
    projects = ProjectStore()
    tasks = TaskStore()
    selector = StaffRotationSelector(projects, tasks, StaffDirectory(), RotationState())
    return VerificationTaskFactory(
        task_store=tasks,
        project_store=projects,
        selector=selector,
        notifier=NotificationDispatcher(),
        lock=ProjectLock(),
    )


def build_incentive_settlement() -> IncentiveSettlement:
    return IncentiveSettlement(
        task_store=TaskStore(),
        ledger=IncentiveLedger(),
        project_store=ProjectStore(),
        lock=ProjectLock(),
    )
