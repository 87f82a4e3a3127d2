"""
Configuration module for the project workflow handlers.
Loads all environment variables needed by the workflow core.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    PROJECTS_TABLE = os.environ.get('PROJECTS_TABLE', '')
    TASKS_TABLE = os.environ.get('TASKS_TABLE', '')
    USERS_TABLE = os.environ.get('USERS_TABLE', '')
    INCENTIVES_TABLE = os.environ.get('INCENTIVES_TABLE', '')
    NOTIFICATIONS_TABLE = os.environ.get('NOTIFICATIONS_TABLE', '')
    WORKFLOW_STATE_TABLE = os.environ.get('WORKFLOW_STATE_TABLE', '')

    # Indexes
    TASKS_BY_PROJECT_INDEX = os.environ.get('TASKS_BY_PROJECT_INDEX', 'byProject')

    # SQS Queues
    NOTIFICATION_QUEUE_URL = os.environ.get('NOTIFICATION_QUEUE_URL', '')

    # Verification
    STAFF_FETCH_LIMIT = int(os.environ.get('STAFF_FETCH_LIMIT', '200'))
    VERIFICATION_DUE_DAYS = int(os.environ.get('VERIFICATION_DUE_DAYS', '7'))
    DEFAULT_INCENTIVE_PERCENTAGE = os.environ.get('DEFAULT_INCENTIVE_PERCENTAGE', '1')
    ROTATION_SCOPE = os.environ.get('ROTATION_SCOPE', 'department')  # 'department' or 'global'

    # Per-project lease lock
    LOCK_TTL_SECONDS = int(os.environ.get('LOCK_TTL_SECONDS', '30'))
    LOCK_ACQUIRE_ATTEMPTS = int(os.environ.get('LOCK_ACQUIRE_ATTEMPTS', '5'))
    LOCK_RETRY_DELAY_SECONDS = float(os.environ.get('LOCK_RETRY_DELAY_SECONDS', '0.2'))

    # Notification dispatch bounds (seconds)
    NOTIFICATION_CONNECT_TIMEOUT = float(os.environ.get('NOTIFICATION_CONNECT_TIMEOUT', '2'))
    NOTIFICATION_READ_TIMEOUT = float(os.environ.get('NOTIFICATION_READ_TIMEOUT', '2'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


config = Config()
