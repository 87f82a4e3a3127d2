"""
Mark Project Invoiced Handler.
POST /projects/{projectId}/invoice
"""
from workflow.auth import get_actor
from workflow.errors import WorkflowError
from workflow.logging import logger, log_event
from workflow.project_state import mark_project_invoiced
from workflow.stores import ProjectStore
from workflow.utils import error_response, format_response, get_path_param

projects = ProjectStore()


def handler(event, context):
    log_event(event)

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return error_response(400, 'Missing projectId')

    actor = get_actor(event)
    if not actor:
        return error_response(401, 'Not authenticated')

    try:
        result = mark_project_invoiced(projects, project_id, actor)
        return format_response(200, {'success': True, 'data': result})
    except WorkflowError as e:
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Error invoicing project {project_id}: {e}")
        return error_response(500, 'Internal Server Error')
