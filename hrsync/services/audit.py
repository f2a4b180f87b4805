"""Date-partitioned JSON audit trails on the local filesystem."""

import json
import os
from datetime import date, datetime
from typing import Generic, List, Optional, Type, TypeVar

import aiofiles

from ..models.audit import (
    AuditError,
    AuditLogEntry,
    DeletionAuditAction,
    DeletionAuditLogEntry,
)
from ..models.base import Document
from ..utils.clock import ensure_utc, to_epoch_ms
from ..utils.logger import get_app_logger


CONVERSATION_AUDIT_DIR = "audit-logs"
DELETION_AUDIT_DIR = "deletion-audit-logs"

EntryT = TypeVar("EntryT", bound=Document)


def _safe_name(identity: str) -> str:
    return identity.replace(os.sep, "_").replace("/", "_")


class AuditTrail(Generic[EntryT]):
    """
    Append-only store of audit entries.

    Each entry is one JSON file at
    ``{base}/{yyyy}/{MM}/{dd}/{identity}_{unix_ms}_{id}.json``, partitioned by
    the entry's timestamp in UTC.
    """

    def __init__(self, base_dir: str, entry_model: Type[EntryT]):
        self.base_dir = base_dir
        self.entry_model = entry_model
        self.logger = get_app_logger()

    def _day_dir(self, day: date) -> str:
        return os.path.join(self.base_dir, f"{day.year:04d}", f"{day.month:02d}", f"{day.day:02d}")

    def path_for(self, entry: EntryT) -> str:
        timestamp = ensure_utc(entry.timestamp)
        filename = f"{_safe_name(entry.owner_identity)}_{to_epoch_ms(timestamp)}_{entry.id}.json"
        return os.path.join(self._day_dir(timestamp.date()), filename)

    async def write(self, entry: EntryT) -> str:
        """
        Write an entry.

        Returns:
            Path of the written file
        """
        path = self.path_for(entry)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, mode='w', encoding='utf-8') as f:
            await f.write(json.dumps(entry.to_document()))
        return path

    async def read(self, owner_identity: str, day: date) -> List[EntryT]:
        """
        Read every entry of an identity for one UTC day, oldest first.

        Args:
            owner_identity: Identity the entries belong to
            day: UTC date partition
        """
        day_dir = self._day_dir(day)
        if not os.path.isdir(day_dir):
            return []

        prefix = f"{_safe_name(owner_identity)}_"
        entries = []
        for filename in sorted(os.listdir(day_dir)):
            if not filename.startswith(prefix) or not filename.endswith(".json"):
                continue
            async with aiofiles.open(os.path.join(day_dir, filename), mode='r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            entry = self.entry_model.from_document(data)
            # Identities can share a filename prefix
            if entry.owner_identity == owner_identity:
                entries.append(entry)

        entries.sort(key=lambda e: e.timestamp)
        return entries


class AuditService:
    """Writes the conversation and deletion audit trails. Never raises."""

    def __init__(self, base_dir: str):
        self.submissions: AuditTrail[AuditLogEntry] = AuditTrail(
            os.path.join(base_dir, CONVERSATION_AUDIT_DIR), AuditLogEntry
        )
        self.deletions: AuditTrail[DeletionAuditLogEntry] = AuditTrail(
            os.path.join(base_dir, DELETION_AUDIT_DIR), DeletionAuditLogEntry
        )
        self.logger = get_app_logger()

    async def record(self, entry: AuditLogEntry) -> Optional[str]:
        try:
            return await self.submissions.write(entry)
        except Exception as e:
            self.logger.error(f"Failed to write audit entry {entry.id} for {entry.owner_identity}: {e}")
            return None

    async def record_submission(
        self,
        owner_identity: str,
        action: str,
        timestamp: datetime,
        success: bool,
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
        conversation_thread_id: Optional[str] = None,
        message_id: Optional[str] = None,
        request_data: Optional[dict] = None,
        response_data: Optional[dict] = None,
        duration_ms: Optional[int] = None,
    ) -> Optional[str]:
        """Audit one call to the HR system."""
        error = None
        if not success:
            error = AuditError(code=str(status_code or "UNKNOWN"), message=error_message or "Submission failed")
        return await self.record(AuditLogEntry(
            owner_identity=owner_identity,
            action=action,
            timestamp=timestamp,
            conversation_thread_id=conversation_thread_id,
            message_id=message_id,
            request_data=request_data,
            response_data=response_data,
            status_code=status_code,
            error=error,
            duration_ms=duration_ms,
        ))

    async def record_deletion(
        self,
        request_id: str,
        owner_identity: str,
        action: DeletionAuditAction,
        timestamp: datetime,
        details: Optional[str] = None,
        ip_address: Optional[str] = None,
        error_message: Optional[str] = None,
        conversations_deleted: Optional[int] = None,
    ) -> Optional[str]:
        """Audit one deletion lifecycle transition."""
        entry = DeletionAuditLogEntry(
            request_id=request_id,
            owner_identity=owner_identity,
            action=action,
            timestamp=timestamp,
            details=details,
            ip_address=ip_address,
            error_message=error_message,
            conversations_deleted=conversations_deleted,
        )
        try:
            return await self.deletions.write(entry)
        except Exception as e:
            self.logger.error(f"Failed to write deletion audit entry for request {request_id}: {e}")
            return None
