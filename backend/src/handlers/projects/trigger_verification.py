"""
Trigger Verification Handler.
POST /projects/{projectId}/verification

Manual re-trigger for projects whose verification stalled because no
eligible verifier was available when the last task completed.
"""
from workflow.auth import get_actor
from workflow.errors import WorkflowError
from workflow.logging import logger, log_event
from workflow.service import build_verification_factory
from workflow.utils import error_response, format_response, get_path_param

factory = build_verification_factory()


def handler(event, context):
    log_event(event)

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return error_response(400, 'Missing projectId')

    actor = get_actor(event)
    if not actor:
        return error_response(401, 'Not authenticated')

    try:
        task = factory.retrigger(project_id, actor)

        if task is None:
            # Already exists, or still nobody eligible: see logs
            return format_response(200, {
                'success': True,
                'created': False,
                'message': 'No verification task created'
            })

        return format_response(201, {'success': True, 'created': True, 'data': task})

    except WorkflowError as e:
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Error triggering verification for project {project_id}: {e}")
        return error_response(500, 'Internal Server Error')
