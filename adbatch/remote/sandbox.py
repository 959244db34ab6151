"""
In-memory sandbox of the advertising platform.

The sandbox keeps entity state in dictionaries and implements every operation
type with the same observable behaviour the engines expect from a real
platform: reads are scoped snapshots, applies mutate state and report it back,
and inverse-applies restore a snapshot exactly.
"""

import asyncio
import copy
import logging
from typing import Any, Dict, Optional, Tuple

from adbatch.batches.models import (
    AppliedChange, EntityRef, EntityType, OperationType, ProposedChange, StateSnapshot,
    NegativeKeywordChange, BidAdjustmentChange, KeywordMigrationChange, CampaignStatusChange
)
from adbatch.remote.client import RemoteMutationClient
from adbatch.remote.errors import EntityNotFoundError, ValidationRejectedError

logger = logging.getLogger(__name__)

EntityKey = Tuple[str, str]

class SandboxAdsClient(RemoteMutationClient):
    """Dict-backed remote platform for local runs and tests."""

    def __init__(self, latency: float = 0.0):
        """
        Initialize the sandbox.

        Args:
            latency: Seconds each remote call waits before completing
        """
        self.latency = latency
        self.entities: Dict[EntityKey, Dict[str, Any]] = {}
        self._next_keyword = 1
        self.calls: list[Tuple[str, str]] = []

    # Seeding and inspection

    def add_entity(self, entity_type: str, entity_id: str, **state: Any) -> Dict[str, Any]:
        """Create or replace an entity."""
        entity_type = EntityType(entity_type).value
        defaults: Dict[str, Any] = {"state": "enabled"}
        if entity_type in (EntityType.CAMPAIGN.value, EntityType.AD_GROUP.value):
            defaults["negative_keywords"] = []
        record = {**defaults, **state}
        self.entities[(entity_type, entity_id)] = record
        return record

    def get_entity(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        return self.entities.get((EntityType(entity_type).value, entity_id))

    # RemoteMutationClient

    async def read_current_state(self, entity: EntityRef, change: ProposedChange) -> StateSnapshot:
        await self._remote_call("read", entity)
        handler = {
            OperationType.NEGATIVE_KEYWORD.value: self._read_negatives,
            OperationType.BID_ADJUSTMENT.value: self._read_bid,
            OperationType.KEYWORD_MIGRATION.value: self._read_migration,
            OperationType.CAMPAIGN_STATUS.value: self._read_status,
        }[change.operation_type]
        return StateSnapshot(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            operation_type=change.operation_type,
            state=handler(entity, change)
        )

    async def apply_change(self, entity: EntityRef, change: ProposedChange) -> AppliedChange:
        await self._remote_call("apply", entity)
        handler = {
            OperationType.NEGATIVE_KEYWORD.value: self._apply_negative,
            OperationType.BID_ADJUSTMENT.value: self._apply_bid,
            OperationType.KEYWORD_MIGRATION.value: self._apply_migration,
            OperationType.CAMPAIGN_STATUS.value: self._apply_status,
        }[change.operation_type]
        return AppliedChange(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            operation_type=change.operation_type,
            state=handler(entity, change)
        )

    async def apply_inverse(self, entity: EntityRef, previous_state: StateSnapshot) -> AppliedChange:
        await self._remote_call("inverse", entity)
        state = copy.deepcopy(previous_state.state)
        operation_type = OperationType(previous_state.operation_type)

        if operation_type == OperationType.NEGATIVE_KEYWORD:
            self._restore_negative(state)
        elif operation_type == OperationType.BID_ADJUSTMENT:
            self._require(entity.entity_type, entity.entity_id)["bid"] = state["bid"]
        elif operation_type == OperationType.KEYWORD_MIGRATION:
            self._restore_migration(entity, state)
        elif operation_type == OperationType.CAMPAIGN_STATUS:
            self._require(entity.entity_type, entity.entity_id)["state"] = state["state"]

        logger.debug(f"Restored {entity.entity_type.value} {entity.entity_id} to snapshot")
        return AppliedChange(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            operation_type=operation_type,
            state=state
        )

    # Internals

    async def _remote_call(self, kind: str, entity: EntityRef) -> None:
        self.calls.append((kind, entity.entity_id))
        if self.latency:
            await asyncio.sleep(self.latency)

    def _require(self, entity_type: Any, entity_id: str) -> Dict[str, Any]:
        entity_type = EntityType(entity_type).value
        record = self.entities.get((entity_type, entity_id))
        if record is None:
            raise EntityNotFoundError(
                f"{entity_type} {entity_id} not found",
                operation="sandbox.lookup",
                details={"entity_type": entity_type, "entity_id": entity_id}
            )
        return record

    def _negative_container(self, entity: EntityRef, change: NegativeKeywordChange) -> EntityKey:
        if entity.entity_type.value == change.negative_level:
            return (entity.entity_type.value, entity.entity_id)
        record = self._require(entity.entity_type, entity.entity_id)
        parent_id = record.get(f"{change.negative_level}_id")
        if not parent_id:
            raise ValidationRejectedError(
                f"{entity.entity_type.value} {entity.entity_id} has no {change.negative_level}",
                operation="negative_keyword.resolve"
            )
        return (change.negative_level, parent_id)

    def _read_negatives(self, entity: EntityRef, change: NegativeKeywordChange) -> Dict[str, Any]:
        # Scoped to the one negative so inverses on a shared container commute
        container_type, container_id = self._negative_container(entity, change)
        container = self._require(container_type, container_id)
        negative = {"text": change.negative_keyword, "match_type": change.negative_match_type}
        return {
            "container_type": container_type,
            "container_id": container_id,
            "negative": negative,
            "present": negative in container["negative_keywords"]
        }

    def _restore_negative(self, state: Dict[str, Any]) -> None:
        container = self._require(state["container_type"], state["container_id"])
        negatives = container["negative_keywords"]
        negative = state["negative"]
        if state["present"] and negative not in negatives:
            negatives.append(negative)
        elif not state["present"] and negative in negatives:
            negatives.remove(negative)

    def _apply_negative(self, entity: EntityRef, change: NegativeKeywordChange) -> Dict[str, Any]:
        container_type, container_id = self._negative_container(entity, change)
        container = self._require(container_type, container_id)
        negative = {"text": change.negative_keyword, "match_type": change.negative_match_type}
        if negative in container["negative_keywords"]:
            raise ValidationRejectedError(
                f"Negative keyword '{change.negative_keyword}' already exists",
                operation="negative_keyword.apply"
            )
        container["negative_keywords"].append(negative)
        return {
            "container_type": container_type,
            "container_id": container_id,
            "negative_keywords": copy.deepcopy(container["negative_keywords"])
        }

    def _read_bid(self, entity: EntityRef, change: BidAdjustmentChange) -> Dict[str, Any]:
        return {"bid": self._require(entity.entity_type, entity.entity_id).get("bid")}

    def _apply_bid(self, entity: EntityRef, change: BidAdjustmentChange) -> Dict[str, Any]:
        record = self._require(entity.entity_type, entity.entity_id)
        if record.get("state") == "archived":
            raise ValidationRejectedError(
                f"Cannot change bid of archived {entity.entity_type.value} {entity.entity_id}",
                operation="bid_adjustment.apply"
            )
        record["bid"] = change.new_bid
        return {"bid": record["bid"]}

    def _find_keyword(self, ad_group_id: str, text: str, match_type: str) -> Optional[str]:
        for (entity_type, entity_id), record in self.entities.items():
            if (
                entity_type == EntityType.KEYWORD.value
                and record.get("ad_group_id") == ad_group_id
                and record.get("keyword_text") == text
                and record.get("match_type") == match_type
            ):
                return entity_id
        return None

    def _migration_target(self, entity: EntityRef, change: KeywordMigrationChange) -> Tuple[Dict[str, Any], str]:
        source = self._require(entity.entity_type, entity.entity_id)
        ad_group_id = change.target_ad_group_id or source.get("ad_group_id")
        return source, ad_group_id

    def _read_migration(self, entity: EntityRef, change: KeywordMigrationChange) -> Dict[str, Any]:
        source, ad_group_id = self._migration_target(entity, change)
        return {
            "source_state": source["state"],
            "target_ad_group_id": ad_group_id,
            "keyword_text": change.keyword_text,
            "to_match_type": change.to_match_type,
            "target_keyword_id": self._find_keyword(ad_group_id, change.keyword_text, change.to_match_type)
        }

    def _apply_migration(self, entity: EntityRef, change: KeywordMigrationChange) -> Dict[str, Any]:
        source, ad_group_id = self._migration_target(entity, change)
        if self._find_keyword(ad_group_id, change.keyword_text, change.to_match_type):
            raise ValidationRejectedError(
                f"Keyword '{change.keyword_text}' already exists as {change.to_match_type}",
                operation="keyword_migration.apply"
            )
        keyword_id = f"kw_sandbox_{self._next_keyword}"
        self._next_keyword += 1
        self.add_entity(
            EntityType.KEYWORD.value,
            keyword_id,
            keyword_text=change.keyword_text,
            match_type=change.to_match_type,
            ad_group_id=ad_group_id,
            campaign_id=source.get("campaign_id"),
            bid=change.bid if change.bid is not None else source.get("bid")
        )
        if change.pause_source:
            source["state"] = "paused"
        return {"source_state": source["state"], "migrated_keyword_id": keyword_id}

    def _restore_migration(self, entity: EntityRef, state: Dict[str, Any]) -> None:
        source = self._require(entity.entity_type, entity.entity_id)
        source["state"] = state["source_state"]
        if state.get("target_keyword_id") is None:
            created = self._find_keyword(
                state["target_ad_group_id"], state["keyword_text"], state["to_match_type"]
            )
            if created is not None:
                del self.entities[(EntityType.KEYWORD.value, created)]

    def _read_status(self, entity: EntityRef, change: CampaignStatusChange) -> Dict[str, Any]:
        return {"state": self._require(entity.entity_type, entity.entity_id)["state"]}

    def _apply_status(self, entity: EntityRef, change: CampaignStatusChange) -> Dict[str, Any]:
        record = self._require(entity.entity_type, entity.entity_id)
        if record["state"] == "archived" and change.target_status != "archived":
            raise ValidationRejectedError(
                f"Campaign {entity.entity_id} is archived",
                operation="campaign_status.apply"
            )
        record["state"] = change.target_status
        return {"state": record["state"]}
