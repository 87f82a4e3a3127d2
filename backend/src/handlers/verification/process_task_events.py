"""
Process Task Events Handler.
Triggered by DynamoDB Stream on the Tasks Table.

When a task changes to 'completed':
- ordinary task -> create the project's verification task if every task is done
- verification task -> settle verification incentives for the verifier

The status change that produced the record has already succeeded, so a
failure here never touches it. A record that lost a race (ConflictError,
e.g. the project lock was busy) is reported in batchItemFailures and the
stream redelivers it; the event source mapping must enable
ReportBatchItemFailures. Any other error is logged and the record dropped.
"""
from workflow.dynamo import deserialize_image
from workflow.errors import ConflictError
from workflow.logging import logger
from workflow.models import TaskStatus, is_verification_task
from workflow.service import build_incentive_settlement, build_verification_factory

factory = build_verification_factory()
settlement = build_incentive_settlement()


def handler(event, context):
    if 'Records' not in event:
        return {'processed': 0, 'batchItemFailures': []}

    processed = 0
    failures = []
    for record in event['Records']:
        if record.get('eventName') not in ('INSERT', 'MODIFY'):
            continue
        try:
            if process_record(record):
                processed += 1
        except ConflictError as e:
            logger.warning(f"Task stream record {record.get('eventID')} will be retried: {e.message}")
            failures.append({'itemIdentifier': record['dynamodb'].get('SequenceNumber')})
        except Exception as e:
            logger.exception(f"Error processing task stream record {record.get('eventID')}: {e}")

    return {'processed': processed, 'batchItemFailures': failures}


def process_record(record) -> bool:
    """
    Process a single stream record. Returns True if a continuation ran.

    Raises:
        ConflictError when the work must be retried
    """
    new_image = deserialize_image(record['dynamodb'].get('NewImage'))
    old_image = deserialize_image(record['dynamodb'].get('OldImage'))

    # Only react when status CHANGED to completed
    if new_image.get('status') != TaskStatus.COMPLETED or old_image.get('status') == TaskStatus.COMPLETED:
        return False
    if new_image.get('deleted'):
        return False

    task_id = new_image['taskId']
    actor_id = new_image.get('updatedBy') or new_image.get('assignedTo')

    if is_verification_task(new_image):
        result = settlement.handle_verification_task_completion(task_id, actor_id)
        logger.info(f"Verification task {task_id} settled: {result}")
        return True

    project_id = new_image.get('projectId')
    if not project_id:
        logger.warning(f"Completed task {task_id} has no project")
        return False

    factory.handle_task_completion(task_id, project_id, actor_id)
    return True
