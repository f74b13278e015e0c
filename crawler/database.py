"""
MongoDB persistence for monitored targets, snapshots and change records.
Handles connection, indexing and the store operations the pipeline consumes.
"""

from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import DESCENDING, ASCENDING
from pymongo.errors import ConnectionFailure, PyMongoError
from pydantic import BaseModel
import structlog

from .exceptions import PersistenceError, StaleTargetError
from .models import ChangeRecord, ChangeType, MonitoredTarget, Significance, Snapshot

logger = structlog.get_logger(__name__)

TARGETS_COLLECTION = "monitored_targets"
SNAPSHOTS_COLLECTION = "snapshots"
CHANGES_COLLECTION = "changes"


class MonitorStore(Protocol):
    """Persistence operations used by the detector, scheduler, annotator and reports."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_target(self, target_id: str) -> Optional[MonitoredTarget]: ...

    async def list_active_targets(self) -> List[MonitoredTarget]: ...

    async def list_targets(self) -> List[MonitoredTarget]: ...

    async def upsert_target(self, target: MonitoredTarget) -> MonitoredTarget: ...

    async def set_target_active(self, target_id: str, active: bool) -> bool: ...

    async def advance_target(
        self, target_id: str, expected_fingerprint: Optional[str], fingerprint: str, checked_at: datetime
    ) -> None: ...

    async def touch_target(
        self, target_id: str, expected_fingerprint: Optional[str], checked_at: datetime
    ) -> None: ...

    async def create_snapshot(self, snapshot: Snapshot) -> Snapshot: ...

    async def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]: ...

    async def find_snapshot(self, target_id: str, fingerprint: str) -> Optional[Snapshot]: ...

    async def delete_snapshot(self, snapshot_id: str) -> bool: ...

    async def create_change(self, change: ChangeRecord) -> ChangeRecord: ...

    async def get_change(self, change_id: str) -> Optional[ChangeRecord]: ...

    async def delete_change(self, change_id: str) -> bool: ...

    async def update_change_enrichment(
        self,
        change_id: str,
        change_type: ChangeType,
        significance: Significance,
        ai_summary: str,
        ai_analysis: str,
        annotated_at: datetime,
    ) -> bool: ...

    async def list_unannotated_changes(self, limit: Optional[int] = None) -> List[ChangeRecord]: ...

    async def list_alertable_changes(self, significances: Iterable[Significance]) -> List[ChangeRecord]: ...

    async def mark_changes_notified(self, change_ids: Iterable[str]) -> int: ...

    async def list_changes_between(self, since: datetime, until: datetime) -> List[ChangeRecord]: ...


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Dump a model to a BSON-friendly dict (enums stored by value)."""
    document = model.model_dump()
    for key, value in document.items():
        if isinstance(value, Enum):
            document[key] = value.value
    return document


@contextmanager
def persistence_errors(action: str, **context):
    """Log driver failures and re-raise them as PersistenceError."""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Failed to {action}", error=str(e), **context)
        raise PersistenceError(f"Failed to {action}: {e}") from e


class MongoMonitorStore:
    """
    Async MongoDB store for the monitoring pipeline.
    Records are keyed by their own ``id`` field; MongoDB's ``_id`` never leaves this class.
    """

    def __init__(self, connection_url: str, database_name: str):
        """
        Initialize the store.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    @property
    def targets(self):
        return self.database[TARGETS_COLLECTION]

    @property
    def snapshots(self):
        return self.database[SNAPSHOTS_COLLECTION]

    @property
    def changes(self):
        return self.database[CHANGES_COLLECTION]

    async def connect(self) -> None:
        """Establish connection to MongoDB and ensure indexes."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise PersistenceError(f"Failed to connect to MongoDB: {e}") from e

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create indexes for the lookups the pipeline performs."""
        with persistence_errors("create indexes"):
            await self.targets.create_index("id", unique=True)
            await self.targets.create_index("url", unique=True)
            await self.targets.create_index([("is_active", ASCENDING), ("last_checked_at", ASCENDING)])

            await self.snapshots.create_index("id", unique=True)
            # Prior-snapshot resolution: newest snapshot of a target with a fingerprint
            await self.snapshots.create_index(
                [("target_id", ASCENDING), ("fingerprint", ASCENDING), ("captured_at", DESCENDING)]
            )

            await self.changes.create_index("id", unique=True)
            await self.changes.create_index("detected_at")
            await self.changes.create_index([("ai_summary", ASCENDING), ("detected_at", ASCENDING)])
            await self.changes.create_index([("notified", ASCENDING), ("significance", ASCENDING)])

            logger.info("Successfully created MongoDB indexes")

    # Targets

    async def get_target(self, target_id: str) -> Optional[MonitoredTarget]:
        with persistence_errors("retrieve target", target_id=target_id):
            document = await self.targets.find_one({"id": target_id})
        if document:
            document.pop('_id', None)
            return MonitoredTarget(**document)
        return None

    async def list_active_targets(self) -> List[MonitoredTarget]:
        return await self._find_targets({"is_active": True})

    async def list_targets(self) -> List[MonitoredTarget]:
        return await self._find_targets({})

    async def _find_targets(self, query: Dict[str, Any]) -> List[MonitoredTarget]:
        targets = []
        with persistence_errors("list targets"):
            cursor = self.targets.find(query).sort("created_at", ASCENDING)
            async for document in cursor:
                document.pop('_id', None)
                targets.append(MonitoredTarget(**document))
        logger.debug("Retrieved targets", count=len(targets), query=query)
        return targets

    async def upsert_target(self, target: MonitoredTarget) -> MonitoredTarget:
        """
        Create a target, or update name/category/frequency of the target with the same URL.

        Pipeline-owned fields (fingerprint, last check) are never overwritten here.
        """
        document = to_document(target)
        editable = {key: document[key] for key in ("name", "category", "check_frequency", "is_active")}
        on_insert = {key: value for key, value in document.items() if key not in editable}

        with persistence_errors("upsert target", url=target.url):
            await self.targets.update_one(
                {"url": target.url},
                {"$set": editable, "$setOnInsert": on_insert},
                upsert=True
            )
            stored = await self.targets.find_one({"url": target.url})

        stored.pop('_id', None)
        logger.info("Upserted target", target_id=stored["id"], url=target.url)
        return MonitoredTarget(**stored)

    async def set_target_active(self, target_id: str, active: bool) -> bool:
        with persistence_errors("update target", target_id=target_id):
            result = await self.targets.update_one({"id": target_id}, {"$set": {"is_active": active}})
        return result.matched_count > 0

    async def advance_target(
        self, target_id: str, expected_fingerprint: Optional[str], fingerprint: str, checked_at: datetime
    ) -> None:
        """
        Move the target pointer to a new fingerprint.

        Raises:
            StaleTargetError: the stored fingerprint no longer matches, or the
                stored check time is newer than ``checked_at``
        """
        await self._update_pointer(
            target_id,
            expected_fingerprint,
            checked_at,
            {"last_fingerprint": fingerprint, "last_checked_at": checked_at},
        )

    async def touch_target(
        self, target_id: str, expected_fingerprint: Optional[str], checked_at: datetime
    ) -> None:
        """Record a check that found no change."""
        await self._update_pointer(target_id, expected_fingerprint, checked_at, {"last_checked_at": checked_at})

    async def _update_pointer(
        self,
        target_id: str,
        expected_fingerprint: Optional[str],
        checked_at: datetime,
        fields: Dict[str, Any],
    ) -> None:
        query = {
            "id": target_id,
            "last_fingerprint": expected_fingerprint,
            "$or": [
                {"last_checked_at": None},
                {"last_checked_at": {"$lte": checked_at}},
            ],
        }
        with persistence_errors("update target pointer", target_id=target_id):
            result = await self.targets.update_one(query, {"$set": fields})

        if result.matched_count == 0:
            logger.warning(
                "Target pointer moved during check",
                target_id=target_id,
                expected_fingerprint=expected_fingerprint
            )
            raise StaleTargetError(f"Target {target_id} was updated by a concurrent check")

    # Snapshots

    async def create_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with persistence_errors("insert snapshot", target_id=snapshot.target_id):
            await self.snapshots.insert_one(to_document(snapshot))
        logger.debug("Stored snapshot", snapshot_id=snapshot.id, target_id=snapshot.target_id)
        return snapshot

    async def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        with persistence_errors("retrieve snapshot", snapshot_id=snapshot_id):
            document = await self.snapshots.find_one({"id": snapshot_id})
        if document:
            document.pop('_id', None)
            return Snapshot(**document)
        return None

    async def find_snapshot(self, target_id: str, fingerprint: str) -> Optional[Snapshot]:
        """Most recent snapshot of a target carrying the given fingerprint."""
        with persistence_errors("find snapshot", target_id=target_id):
            document = await self.snapshots.find_one(
                {"target_id": target_id, "fingerprint": fingerprint},
                sort=[("captured_at", DESCENDING)]
            )
        if document:
            document.pop('_id', None)
            return Snapshot(**document)
        return None

    async def delete_snapshot(self, snapshot_id: str) -> bool:
        with persistence_errors("delete snapshot", snapshot_id=snapshot_id):
            result = await self.snapshots.delete_one({"id": snapshot_id})
        return result.deleted_count > 0

    # Changes

    async def create_change(self, change: ChangeRecord) -> ChangeRecord:
        with persistence_errors("insert change", target_id=change.target_id):
            await self.changes.insert_one(to_document(change))
        logger.debug("Stored change", change_id=change.id, target_id=change.target_id)
        return change

    async def get_change(self, change_id: str) -> Optional[ChangeRecord]:
        with persistence_errors("retrieve change", change_id=change_id):
            document = await self.changes.find_one({"id": change_id})
        if document:
            document.pop('_id', None)
            return ChangeRecord(**document)
        return None

    async def delete_change(self, change_id: str) -> bool:
        with persistence_errors("delete change", change_id=change_id):
            result = await self.changes.delete_one({"id": change_id})
        return result.deleted_count > 0

    async def update_change_enrichment(
        self,
        change_id: str,
        change_type: ChangeType,
        significance: Significance,
        ai_summary: str,
        ai_analysis: str,
        annotated_at: datetime,
    ) -> bool:
        """Write AI enrichment fields. Diff and snapshot references are left untouched."""
        update = {
            "change_type": change_type.value,
            "significance": significance.value,
            "ai_summary": ai_summary,
            "ai_analysis": ai_analysis,
            "annotated_at": annotated_at,
        }
        with persistence_errors("update change enrichment", change_id=change_id):
            result = await self.changes.update_one({"id": change_id}, {"$set": update})
        return result.matched_count > 0

    async def list_unannotated_changes(self, limit: Optional[int] = None) -> List[ChangeRecord]:
        cursor = self.changes.find({"ai_summary": None}).sort("detected_at", ASCENDING)
        if limit:
            cursor = cursor.limit(limit)
        return await self._collect_changes(cursor, "list unannotated changes")

    async def list_alertable_changes(self, significances: Iterable[Significance]) -> List[ChangeRecord]:
        query = {
            "notified": False,
            "ai_summary": {"$ne": None},
            "significance": {"$in": [s.value for s in significances]},
        }
        cursor = self.changes.find(query).sort("detected_at", ASCENDING)
        return await self._collect_changes(cursor, "list alertable changes")

    async def mark_changes_notified(self, change_ids: Iterable[str]) -> int:
        ids = list(change_ids)
        if not ids:
            return 0
        with persistence_errors("mark changes notified", count=len(ids)):
            result = await self.changes.update_many({"id": {"$in": ids}}, {"$set": {"notified": True}})
        return result.modified_count

    async def list_changes_between(self, since: datetime, until: datetime) -> List[ChangeRecord]:
        cursor = self.changes.find({"detected_at": {"$gte": since, "$lt": until}}).sort("detected_at", ASCENDING)
        return await self._collect_changes(cursor, "list changes")

    async def _collect_changes(self, cursor, action: str) -> List[ChangeRecord]:
        changes = []
        with persistence_errors(action):
            async for document in cursor:
                document.pop('_id', None)
                changes.append(ChangeRecord(**document))
        return changes
