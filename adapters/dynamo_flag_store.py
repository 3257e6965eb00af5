"""
DynamoDB-backed flag store adapter.

Implements FlagStorePort using boto3 for the FlaggedContent table.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from domain.models import FlaggedContent, FlagType
from ports.flag_store import FlagStorePort  # noqa: F401 (runtime_checkable)
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.constants import LogScope
from shared_utils.error_handler import ExternalServiceError


logger = get_scoped_logger(LogScope.ADAPTER)


class DynamoFlagStoreAdapter:
    """Amazon DynamoDB implementation of FlagStorePort.

    Table key: ``session_id`` (partition key) + ``flag_key`` (sort key,
    ``<zero-padded timestamp_ms>#<flag_id>``) so a plain query returns flags
    already ordered by timestamp.
    """

    def __init__(
        self,
        table_name: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        dynamodb_resource: Optional[object] = None,
    ) -> None:
        self._table_name = table_name
        resource_kwargs: dict = {"region_name": region}
        if endpoint_url:
            resource_kwargs["endpoint_url"] = endpoint_url
        self._dynamo = dynamodb_resource or boto3.resource(
            "dynamodb", **resource_kwargs
        )
        self._table = self._dynamo.Table(table_name)

    # ------------------------------------------------------------------
    # FlagStorePort implementation
    # ------------------------------------------------------------------

    def add_flags(self, flags: List[FlaggedContent]) -> None:
        if not flags:
            return
        try:
            with self._table.batch_writer() as batch:
                for flag in flags:
                    batch.put_item(Item=self._to_dynamo_item(flag))
            logger.info(
                "dynamo_flags_added",
                session_id=flags[0].session_id,
                count=len(flags),
            )
        except ClientError as exc:
            logger.error("dynamo_add_flags_failed", error=str(exc))
            raise ExternalServiceError(
                "DynamoDB", f"Failed to write flags: {exc}"
            ) from exc

    def list_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> List[FlaggedContent]:
        wanted = {t.value for t in flag_types} if flag_types is not None else None
        items = self._query_session(session_id)
        if wanted is not None:
            items = [i for i in items if i.get("flag_type") in wanted]
        return [self._from_dynamo_item(i) for i in items]

    def list_flags_for_sessions(self, session_ids: Iterable[str]) -> List[FlaggedContent]:
        flags = [
            self._from_dynamo_item(item)
            for session_id in dict.fromkeys(session_ids)
            for item in self._query_session(session_id)
        ]
        return sorted(flags, key=lambda f: f.created_at, reverse=True)

    def delete_flags(
        self, session_id: str, flag_types: Optional[Iterable[FlagType]] = None
    ) -> int:
        wanted = {t.value for t in flag_types} if flag_types is not None else None
        items = self._query_session(session_id)
        doomed = [i for i in items if wanted is None or i.get("flag_type") in wanted]
        try:
            with self._table.batch_writer() as batch:
                for item in doomed:
                    batch.delete_item(
                        Key={"session_id": item["session_id"], "flag_key": item["flag_key"]}
                    )
        except ClientError as exc:
            logger.error(
                "dynamo_delete_flags_failed", session_id=session_id, error=str(exc)
            )
            raise ExternalServiceError(
                "DynamoDB", f"Failed to delete flags: {exc}"
            ) from exc
        logger.info("dynamo_flags_deleted", session_id=session_id, removed=len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _query_session(self, session_id: str) -> List[Dict[str, Any]]:
        query_kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("session_id").eq(session_id),
        }
        items: List[Dict[str, Any]] = []
        try:
            # Handle pagination
            while True:
                response = self._table.query(**query_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if last_key is None:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            logger.error(
                "dynamo_query_flags_failed", session_id=session_id, error=str(exc)
            )
            raise ExternalServiceError(
                "DynamoDB", f"Failed to query flags: {exc}"
            ) from exc
        return items

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def flag_key(flag: FlaggedContent) -> str:
        return f"{flag.timestamp_ms:012d}#{flag.flag_id}"

    @staticmethod
    def _to_dynamo_item(flag: FlaggedContent) -> Dict[str, Any]:
        """Convert domain FlaggedContent → DynamoDB item dict."""
        item: Dict[str, Any] = {
            "session_id": flag.session_id,
            "flag_key": DynamoFlagStoreAdapter.flag_key(flag),
            "flag_id": flag.flag_id,
            "flag_type": flag.flag_type.value,
            "flagged_word": flag.flagged_word,
            "context": flag.context,
            "timestamp_ms": flag.timestamp_ms,
            "created_at": flag.created_at,
        }
        if flag.speaker:
            item["speaker"] = flag.speaker
        return item

    @staticmethod
    def _from_dynamo_item(item: Dict[str, Any]) -> FlaggedContent:
        """Convert DynamoDB item dict → domain FlaggedContent."""
        return FlaggedContent(
            flag_id=item["flag_id"],
            session_id=item["session_id"],
            flag_type=FlagType(item["flag_type"]),
            flagged_word=item.get("flagged_word", ""),
            context=item.get("context", ""),
            timestamp_ms=int(item.get("timestamp_ms", 0)),
            speaker=item.get("speaker"),
            created_at=item["created_at"],
        )
