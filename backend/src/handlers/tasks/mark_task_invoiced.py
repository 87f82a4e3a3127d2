"""
Mark Task Invoiced Handler.
POST /tasks/{taskId}/invoice
Body: { "invoiceId": "..." }
"""
from workflow.auth import get_actor
from workflow.errors import WorkflowError
from workflow.logging import logger, log_event
from workflow.stores import TaskStore
from workflow.tasks import mark_task_invoiced
from workflow.utils import error_response, format_response, get_path_param, parse_body

tasks = TaskStore()


def handler(event, context):
    log_event(event)

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return error_response(400, 'Missing taskId')

    actor = get_actor(event)
    if not actor:
        return error_response(401, 'Not authenticated')

    body = parse_body(event)

    try:
        task = mark_task_invoiced(tasks, task_id, body.get('invoiceId'), actor)
        return format_response(200, {'success': True, 'data': task})
    except WorkflowError as e:
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Error invoicing task {task_id}: {e}")
        return error_response(500, 'Internal Server Error')
