from __future__ import annotations

import json
from typing import Any, Optional, Protocol

from eventdesk.logging import get_logger
from eventdesk.storage.models import AuditEntry

logger = get_logger(__name__)


class AuditStore(Protocol):
    def save_audit(
        self, action: str, user_id: Optional[str] = None, metadata: Optional[str] = None
    ) -> AuditEntry: ...


class AuditService:
    """Write-only audit sink.

    Storage failures are logged and never block the operation being audited.
    """

    def __init__(self, store: AuditStore) -> None:
        self.store = store

    async def log(
        self,
        action: str,
        user_id: Optional[str] = None,
        metadata: Optional[Any] = None,
    ) -> None:
        serialized = json.dumps(metadata, default=str) if metadata else None
        try:
            self.store.save_audit(action, user_id, serialized)
        except Exception as exc:
            logger.error(
                "audit_write_failed",
                action=action,
                user_id=user_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
