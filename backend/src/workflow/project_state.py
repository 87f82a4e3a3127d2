"""
Unified project phase machine.

    in-progress -> awaiting-verification -> verified -> invoiced

Both ways a project can finish (advancing past its last level, and all
tasks completing) move the phase through move_to(), which only ever goes
forward. is_done() is the one answer to "is this project done".
"""
from .errors import ConflictError, NotFoundError, UnauthorizedError
from .logging import logger
from .models import ProjectPhase


# Phases a project may be in when moving to the key phase.
# A missing phase attribute counts as in-progress.
ALLOWED_PREDECESSORS = {
    ProjectPhase.AWAITING_VERIFICATION: [ProjectPhase.IN_PROGRESS],
    ProjectPhase.VERIFIED: [ProjectPhase.IN_PROGRESS, ProjectPhase.AWAITING_VERIFICATION],
    ProjectPhase.INVOICED: [ProjectPhase.VERIFIED],
}


def current_phase(project: dict) -> str:
    return project.get('phase') or ProjectPhase.IN_PROGRESS


def is_done(project: dict) -> bool:
    return current_phase(project) in (ProjectPhase.VERIFIED, ProjectPhase.INVOICED)


def move_to(project_store, project_id: str, phase: str) -> bool:
    """
    Move a project forward to phase.

    Returns:
        True if the phase changed, False if the project was already at or past it
    """
    allowed_from = ALLOWED_PREDECESSORS[phase]
    moved = project_store.set_phase(
        project_id,
        phase,
        allowed_from=allowed_from,
        allow_missing=ProjectPhase.IN_PROGRESS in allowed_from,
    )
    if moved:
        logger.info(f"Project {project_id} moved to phase {phase}")
    else:
        logger.info(f"Project {project_id} not moved to phase {phase}: already at or past it")
    return moved


def mark_project_invoiced(project_store, project_id: str, actor) -> dict:
    """Close a verified project. Admins and managers only."""
    if not actor.is_privileged:
        raise UnauthorizedError('Only admins and managers can invoice a project')

    project = project_store.get(project_id)
    if not project:
        raise NotFoundError(f"Project not found with id of {project_id}")

    phase = current_phase(project)
    if phase == ProjectPhase.INVOICED:
        return {'phase': phase, 'changed': False}
    if phase != ProjectPhase.VERIFIED:
        raise ConflictError(f"Project must be verified before it can be invoiced (phase: {phase})")

    if not move_to(project_store, project_id, ProjectPhase.INVOICED):
        raise ConflictError(f"Project {project_id} changed phase during invoicing")
    return {'phase': ProjectPhase.INVOICED, 'changed': True}
