"""
Level advancement state machine.

A project walks its levels 0..L-1 strictly in order. Only an admin, a
manager, or the user owning the current level may move it forward, and only
once every non-deleted task at that level is completed. Advancing from the
last level completes the project and hands it to verification/invoicing.
"""
from .errors import IncompleteLevelError, NotFoundError, UnauthorizedError, ValidationError
from .logging import logger
from .models import AdvanceState, ProjectPhase, ProjectStatus
from .project_state import move_to


class LevelAdvancer:
    """Moves projects from one level to the next."""

    def __init__(self, project_store, task_store):
        self.projects = project_store
        self.tasks = task_store

    def advance(self, project_id: str, actor) -> dict:
        """
        Advance a project by one level.

        Args:
            project_id: Project to advance
            actor: Acting user (auth.Actor)

        Returns:
            {'state': 'advanced', 'currentLevelIndex': n} or
            {'state': 'ready-for-invoice', 'currentLevelIndex': n}

        Raises:
            NotFoundError, UnauthorizedError, IncompleteLevelError, ConflictError
        """
        project = self.projects.get(project_id)
        if not project:
            raise NotFoundError(f"Project not found with id of {project_id}")

        levels = project.get('assignedTo') or []
        if not levels:
            raise ValidationError(f"Project {project_id} has no levels")

        current = int(project.get('currentLevelIndex', 0))
        level = levels[current] if current < len(levels) else None
        is_level_owner = level is not None and str(level.get('user')) == actor.user_id

        if not actor.is_privileged and not is_level_owner:
            raise UnauthorizedError()

        if level is None or project.get('status') == ProjectStatus.COMPLETED:
            return {'state': AdvanceState.READY_FOR_INVOICE, 'currentLevelIndex': current}

        pending = self.tasks.count_open_at_level(project_id, current)
        if pending > 0:
            logger.info(f"Project {project_id} level {current} has {pending} open tasks")
            raise IncompleteLevelError()

        if current + 1 < len(levels):
            new_index = self.projects.advance_level(project_id, current)
            logger.info(f"Project {project_id} moved from level {current} to {new_index} by {actor.user_id}")
            return {'state': AdvanceState.ADVANCED, 'currentLevelIndex': new_index}

        # Last level completed -> invoice process
        self.projects.complete(project_id, current)
        move_to(self.projects, project_id, ProjectPhase.AWAITING_VERIFICATION)
        logger.info(f"Project {project_id} completed its last level ({current}) by {actor.user_id}")
        return {'state': AdvanceState.READY_FOR_INVOICE, 'currentLevelIndex': current}
