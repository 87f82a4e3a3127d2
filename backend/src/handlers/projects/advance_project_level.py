"""
Advance Project Level Handler.
POST /projects/{projectId}/advance

Moves the project to its next level once every task at the current level is
completed. On the last level the project is completed and handed over to
verification and invoicing.
"""
from workflow.auth import get_actor
from workflow.errors import WorkflowError
from workflow.logging import logger, log_event
from workflow.models import AdvanceState
from workflow.service import build_level_advancer
from workflow.utils import error_response, format_response, get_path_param

advancer = build_level_advancer()


def handler(event, context):
    log_event(event)

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return error_response(400, 'Missing projectId')

    actor = get_actor(event)
    if not actor:
        return error_response(401, 'Not authenticated')

    try:
        result = advancer.advance(project_id, actor)

        if result['state'] == AdvanceState.ADVANCED:
            message = 'Moved to next level'
        else:
            message = 'Project completed. Move to invoice.'

        return format_response(200, {'success': True, 'message': message, 'data': result})

    except WorkflowError as e:
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Error advancing project {project_id}: {e}")
        return error_response(500, 'Internal Server Error')
