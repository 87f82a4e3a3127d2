"""
Notification dispatch to users.

A notification is stored in the notifications table and pushed onto the
notification queue, which the realtime layer delivers to connected clients.
Dispatch is best-effort: failures are logged and never raised.
"""
import json
import uuid
import boto3
from typing import Any, Dict
from botocore.config import Config as BotoConfig
from .config import config
from .dynamo import table
from .logging import logger
from .utils import DecimalEncoder, utc_now

# Single attempt with short timeouts so a slow notifier cannot hold up task creation
NOTIFIER_BOTO_CONFIG = BotoConfig(
    connect_timeout=config.NOTIFICATION_CONNECT_TIMEOUT,
    read_timeout=config.NOTIFICATION_READ_TIMEOUT,
    retries={'max_attempts': 1, 'mode': 'standard'},
)


class NotificationDispatcher:
    """Persists a notification and queues it for delivery to one user."""

    def __init__(self, notifications_table: str = None, queue_url: str = None, sqs_client=None):
        self.notifications_table_name = notifications_table or config.NOTIFICATIONS_TABLE
        self.queue_url = config.NOTIFICATION_QUEUE_URL if queue_url is None else queue_url
        self.sqs = sqs_client or boto3.client(
            'sqs', region_name=config.AWS_REGION, config=NOTIFIER_BOTO_CONFIG
        )

    def send_to_user(self, user_id: str, payload: Dict[str, Any]) -> bool:
        """
        Send a notification to a single user.

        Args:
            user_id: Recipient user ID
            payload: {title, message, type, sender?, taskId?, projectId?}

        Returns:
            True if stored and queued, False otherwise
        """
        notification = {
            'notificationId': str(uuid.uuid4()),
            'user': user_id,
            'read': False,
            'createdAt': utc_now().isoformat(),
            **{k: v for k, v in payload.items() if v is not None},
        }

        try:
            if self.notifications_table_name:
                table(self.notifications_table_name).put_item(Item=notification)

            if self.queue_url:
                self.sqs.send_message(
                    QueueUrl=self.queue_url,
                    MessageBody=json.dumps(
                        {'userId': user_id, 'type': 'notification', 'data': notification},
                        cls=DecimalEncoder,
                    ),
                    MessageAttributes={
                        'userId': {'DataType': 'String', 'StringValue': user_id},
                    },
                )
            logger.info(f"Notification {notification['notificationId']} sent to user {user_id}")
            return True
        except Exception as e:
            logger.error(f"Error sending notification to user {user_id}: {e}")
            return False
