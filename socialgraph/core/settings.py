from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # Cognito (optional wiring; auth is pluggable)
    cognito_user_pool_id: str = os.environ.get("COGNITO_USER_POOL_ID", "")
    cognito_region: str = os.environ.get("COGNITO_REGION", "")
    cognito_app_client_id: str = os.environ.get("COGNITO_APP_CLIENT_ID", "")
    cognito_expected_token_use: str = os.environ.get("COGNITO_EXPECTED_TOKEN_USE", "access")

    # Storage
    store_backend: str = os.environ.get("STORE_BACKEND", "dynamodb").lower()
    documents_table_name: str = os.environ.get("DOCUMENTS_TABLE_NAME", "social_documents")
    notifications_table_name: str = os.environ.get("NOTIFICATIONS_TABLE_NAME", "social_notifications")

    # Optimistic concurrency
    cas_max_attempts: int = int(os.environ.get("CAS_MAX_ATTEMPTS", "5"))
    cas_base_delay_ms: int = int(os.environ.get("CAS_BASE_DELAY_MS", "10"))
    request_deadline_seconds: float = float(os.environ.get("REQUEST_DEADLINE_SECONDS", "5"))

    # Engagement
    view_dedup_window_seconds: int = int(os.environ.get("VIEW_DEDUP_WINDOW_SECONDS", str(24 * 3600)))
    view_retention_days: int = int(os.environ.get("VIEW_RETENTION_DAYS", "30"))

    # Notifications
    notification_dedup_window_seconds: int = int(os.environ.get("NOTIFICATION_DEDUP_WINDOW_SECONDS", "300"))
    notification_max_message_len: int = int(os.environ.get("NOTIFICATION_MAX_MESSAGE_LEN", "500"))
    delivery_queue_url: str = os.environ.get("DELIVERY_QUEUE_URL", "")

    audit_log_enabled: bool = os.environ.get("AUDIT_LOG_ENABLED", "1") not in ("0", "false", "False")
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")

    # Consistency checker may only write when this is on
    repair_mode_enabled: bool = os.environ.get("REPAIR_MODE_ENABLED", "0") not in ("0", "false", "False")


S = Settings()
