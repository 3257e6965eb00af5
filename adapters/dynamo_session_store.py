"""
DynamoDB-backed session store adapter.

Implements SessionStorePort using boto3 for the DiscussionSessions table.
The cursor compare-and-set is a conditional ``update_item``: the write only
lands if the stored cursor still equals the caller's ``fromIndex`` and the
session is a draft.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from domain.models import (
    ParticipationBalance,
    ParticipationConfig,
    Segment,
    Session,
    SessionStatus,
    utc_now_iso,
)
from ports.session_store import SessionStorePort  # noqa: F401 (runtime_checkable)
from shared_utils.logging_utils import get_scoped_logger
from shared_utils.constants import LogScope
from shared_utils.error_handler import (
    CursorConflictError,
    ExternalServiceError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)


logger = get_scoped_logger(LogScope.ADAPTER)

_CONDITION_FAILED = "ConditionalCheckFailedException"

# Placeholders for attribute names that are DynamoDB reserved words
_NAMES = {
    "#st": "status",
    "#cur": "cursor",
    "#seg": "segments",
    "#upd": "updated_at",
    "#rsa": "reconcile_started_at",
}


class DynamoSessionStoreAdapter:
    """Amazon DynamoDB implementation of SessionStorePort.

    Table key: ``session_id`` (partition key, no sort key). Segments are kept
    as a JSON string attribute next to the numeric ``cursor``. Owner listings
    query the ``owner_index`` GSI (partition ``owner_id``, sort ``created_at``).
    """

    def __init__(
        self,
        table_name: str,
        region: str = "eu-west-2",
        endpoint_url: str = "",
        dynamodb_resource: Optional[object] = None,
        owner_index: str = "OwnerIndex",
    ) -> None:
        self._table_name = table_name
        self._owner_index = owner_index
        resource_kwargs: dict = {"region_name": region}
        if endpoint_url:
            resource_kwargs["endpoint_url"] = endpoint_url
        self._dynamo = dynamodb_resource or boto3.resource(
            "dynamodb", **resource_kwargs
        )
        self._table = self._dynamo.Table(table_name)

    # ------------------------------------------------------------------
    # SessionStorePort implementation
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        item = self._to_dynamo_item(session)
        try:
            self._table.put_item(
                Item=item, ConditionExpression=Attr("session_id").not_exists()
            )
            logger.info("dynamo_session_created", session_id=session.session_id)
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                raise ValidationError(
                    "Session already exists", context={"session_id": session.session_id}
                ) from exc
            self._raise_storage("create_session", session.session_id, exc)

    def get_session(self, session_id: str) -> Optional[Session]:
        try:
            response = self._table.get_item(
                Key={"session_id": session_id}, ConsistentRead=True
            )
        except ClientError as exc:
            self._raise_storage("get_session", session_id, exc)
        item = response.get("Item")
        if item is None:
            return None
        return self._from_dynamo_item(item)

    def append_segments(
        self, session_id: str, segments: List[Segment], from_index: int
    ) -> Session:
        current = self._require(session_id)
        if current.status != SessionStatus.DRAFT:
            raise SessionClosedError(session_id, current.status.value)
        if current.cursor != from_index:
            raise CursorConflictError(
                expected=from_index, actual=current.cursor, session_id=session_id
            )

        merged = list(current.segments[:from_index]) + list(segments)
        try:
            response = self._table.update_item(
                Key={"session_id": session_id},
                UpdateExpression="SET #seg = :seg, #cur = :new, #upd = :t",
                ConditionExpression="#cur = :expected AND #st = :draft",
                ExpressionAttributeNames=_NAMES,
                ExpressionAttributeValues={
                    ":seg": _dump_segments(merged),
                    ":new": from_index + len(segments),
                    ":expected": from_index,
                    ":draft": SessionStatus.DRAFT.value,
                    ":t": utc_now_iso(),
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) != _CONDITION_FAILED:
                self._raise_storage("append_segments", session_id, exc)
            # Lost the race: report what actually won.
            latest = self._require(session_id)
            if latest.status != SessionStatus.DRAFT:
                raise SessionClosedError(session_id, latest.status.value) from exc
            raise CursorConflictError(
                expected=from_index, actual=latest.cursor, session_id=session_id
            ) from exc

        logger.info(
            "dynamo_segments_appended",
            session_id=session_id,
            from_index=from_index,
            cursor=from_index + len(segments),
        )
        return self._from_dynamo_item(response["Attributes"])

    def replace_segments(self, session_id: str, segments: List[Segment]) -> Session:
        try:
            response = self._table.update_item(
                Key={"session_id": session_id},
                UpdateExpression="SET #seg = :seg, #cur = :new, #upd = :t",
                ConditionExpression=Attr("session_id").exists(),
                ExpressionAttributeNames={k: _NAMES[k] for k in ("#seg", "#cur", "#upd")},
                ExpressionAttributeValues={
                    ":seg": _dump_segments(segments),
                    ":new": len(segments),
                    ":t": utc_now_iso(),
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                raise SessionNotFoundError(session_id) from exc
            self._raise_storage("replace_segments", session_id, exc)
        logger.info(
            "dynamo_segments_replaced", session_id=session_id, segment_count=len(segments)
        )
        return self._from_dynamo_item(response["Attributes"])

    def update_topic_config(
        self,
        session_id: str,
        topic_prompt: Optional[str],
        topic_keywords: Optional[List[str]],
    ) -> Session:
        sets = ["#upd = :t"]
        removes = []
        values: Dict[str, Any] = {}
        if topic_prompt:
            sets.append("topic_prompt = :p")
            values[":p"] = topic_prompt
        else:
            removes.append("topic_prompt")
        if topic_keywords:
            sets.append("topic_keywords = :k")
            values[":k"] = list(topic_keywords)
        else:
            removes.append("topic_keywords")

        update_expr = "SET " + ", ".join(sets)
        if removes:
            update_expr += " REMOVE " + ", ".join(removes)
        return self._update(session_id, update_expr, values, "update_topic_config")

    def update_participation_config(
        self, session_id: str, config: Optional[ParticipationConfig]
    ) -> Session:
        if config is None:
            return self._update(
                session_id,
                "SET #upd = :t REMOVE participation_config",
                {},
                "update_participation_config",
            )
        return self._update(
            session_id,
            "SET participation_config = :c, #upd = :t",
            {":c": config.model_dump_json()},
            "update_participation_config",
        )

    def increment_counters(
        self, session_id: str, profanity: int = 0, language_violations: int = 0
    ) -> None:
        self._update(
            session_id,
            "ADD profanity_count :p, language_violation_count :l SET #upd = :t",
            {":p": profanity, ":l": language_violations},
            "increment_counters",
        )

    def set_counters(
        self, session_id: str, profanity: int, language_violations: int
    ) -> None:
        self._update(
            session_id,
            "SET profanity_count = :p, language_violation_count = :l, #upd = :t",
            {":p": profanity, ":l": language_violations},
            "set_counters",
        )

    def save_analysis(
        self,
        session_id: str,
        participation_balance: ParticipationBalance,
        topic_adherence_score: float,
    ) -> None:
        self._update(
            session_id,
            "SET participation_balance = :b, topic_adherence_score = :s, #upd = :t",
            {
                ":b": participation_balance.model_dump_json(),
                ":s": Decimal(str(topic_adherence_score)),
            },
            "save_analysis",
        )

    def transition_status(
        self,
        session_id: str,
        expected: SessionStatus,
        new: SessionStatus,
        duration: Optional[float] = None,
    ) -> bool:
        update_expr = "SET #st = :new, #upd = :t"
        names = {"#st": "status", "#upd": "updated_at"}
        values: Dict[str, Any] = {
            ":new": new.value,
            ":expected": expected.value,
            ":t": utc_now_iso(),
        }
        if duration is not None:
            update_expr += ", #dur = :d"
            names["#dur"] = "duration"
            values[":d"] = Decimal(str(duration))

        try:
            self._table.update_item(
                Key={"session_id": session_id},
                UpdateExpression=update_expr,
                ConditionExpression="#st = :expected",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                logger.info(
                    "dynamo_status_transition_skipped",
                    session_id=session_id,
                    expected=expected.value,
                )
                return False
            self._raise_storage("transition_status", session_id, exc)

        logger.info(
            "dynamo_status_transition",
            session_id=session_id,
            from_status=expected.value,
            to_status=new.value,
        )
        return True

    def claim_reconciliation(self, session_id: str, lease_seconds: float) -> bool:
        now = datetime.now(timezone.utc)
        stale_before = (now - timedelta(seconds=lease_seconds)).isoformat()
        try:
            self._table.update_item(
                Key={"session_id": session_id},
                UpdateExpression="SET #st = :reconciling, #rsa = :t, #upd = :t",
                ConditionExpression=(
                    "#st = :draft OR (#st = :reconciling AND "
                    "(attribute_not_exists(#rsa) OR #rsa <= :stale))"
                ),
                ExpressionAttributeNames={k: _NAMES[k] for k in ("#st", "#rsa", "#upd")},
                ExpressionAttributeValues={
                    ":draft": SessionStatus.DRAFT.value,
                    ":reconciling": SessionStatus.RECONCILING.value,
                    ":stale": stale_before,
                    ":t": now.isoformat(),
                },
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                logger.info("dynamo_reconciliation_claim_lost", session_id=session_id)
                return False
            self._raise_storage("claim_reconciliation", session_id, exc)

        logger.info("dynamo_reconciliation_claimed", session_id=session_id)
        return True

    def list_sessions(self, owner_id: str) -> List[Session]:
        query_kwargs: Dict[str, Any] = {
            "IndexName": self._owner_index,
            "KeyConditionExpression": Key("owner_id").eq(owner_id),
            "ScanIndexForward": False,
        }
        items: List[Dict[str, Any]] = []
        try:
            while True:
                response = self._table.query(**query_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if last_key is None:
                    break
                query_kwargs["ExclusiveStartKey"] = last_key
        except ClientError as exc:
            logger.error("dynamo_list_sessions_failed", owner_id=owner_id, error=str(exc))
            raise ExternalServiceError(
                "DynamoDB", f"Failed to list sessions: {exc}"
            ) from exc
        return [self._from_dynamo_item(i) for i in items]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _update(
        self,
        session_id: str,
        update_expr: str,
        values: Dict[str, Any],
        operation: str,
    ) -> Session:
        try:
            response = self._table.update_item(
                Key={"session_id": session_id},
                UpdateExpression=update_expr,
                ConditionExpression=Attr("session_id").exists(),
                ExpressionAttributeNames={"#upd": "updated_at"},
                ExpressionAttributeValues={**values, ":t": utc_now_iso()},
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _error_code(exc) == _CONDITION_FAILED:
                raise SessionNotFoundError(session_id) from exc
            self._raise_storage(operation, session_id, exc)
        return self._from_dynamo_item(response["Attributes"])

    @staticmethod
    def _raise_storage(operation: str, session_id: str, exc: ClientError) -> None:
        logger.error(
            f"dynamo_{operation}_failed",
            session_id=session_id,
            error=str(exc),
        )
        raise ExternalServiceError(
            "DynamoDB", f"Failed to {operation.replace('_', ' ')}: {exc}"
        ) from exc

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_dynamo_item(session: Session) -> Dict[str, Any]:
        """Convert domain Session → DynamoDB item dict."""
        item: Dict[str, Any] = {
            "session_id": session.session_id,
            "owner_id": session.owner_id,
            "status": session.status.value,
            "language": session.language,
            "segments": _dump_segments(session.segments),
            "cursor": session.cursor,
            "profanity_count": session.profanity_count,
            "language_violation_count": session.language_violation_count,
            "created_at": session.created_at,
            "updated_at": session.updated_at,
        }
        if session.topic_prompt:
            item["topic_prompt"] = session.topic_prompt
        if session.topic_keywords:
            item["topic_keywords"] = list(session.topic_keywords)
        if session.participation_config is not None:
            item["participation_config"] = session.participation_config.model_dump_json()
        if session.participation_balance is not None:
            item["participation_balance"] = session.participation_balance.model_dump_json()
        if session.topic_adherence_score is not None:
            item["topic_adherence_score"] = Decimal(str(session.topic_adherence_score))
        if session.duration is not None:
            item["duration"] = Decimal(str(session.duration))
        if session.reconcile_started_at:
            item["reconcile_started_at"] = session.reconcile_started_at
        return item

    @staticmethod
    def _from_dynamo_item(item: Dict[str, Any]) -> Session:
        """Convert DynamoDB item dict → domain Session."""
        config_raw = item.get("participation_config")
        balance_raw = item.get("participation_balance")
        score = item.get("topic_adherence_score")
        duration = item.get("duration")
        keywords = item.get("topic_keywords")

        return Session(
            session_id=item["session_id"],
            owner_id=item.get("owner_id", ""),
            status=SessionStatus(item.get("status", SessionStatus.DRAFT.value)),
            language=item.get("language", "en"),
            segments=_load_segments(item.get("segments")),
            cursor=int(item.get("cursor", 0)),
            profanity_count=int(item.get("profanity_count", 0)),
            language_violation_count=int(item.get("language_violation_count", 0)),
            topic_prompt=item.get("topic_prompt"),
            topic_keywords=list(keywords) if keywords else None,
            participation_config=(
                ParticipationConfig.model_validate_json(config_raw) if config_raw else None
            ),
            participation_balance=(
                ParticipationBalance.model_validate_json(balance_raw) if balance_raw else None
            ),
            topic_adherence_score=float(score) if score is not None else None,
            duration=float(duration) if duration is not None else None,
            reconcile_started_at=item.get("reconcile_started_at"),
            created_at=item.get("created_at", utc_now_iso()),
            updated_at=item.get("updated_at", utc_now_iso()),
        )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _dump_segments(segments: List[Segment]) -> str:
    return json.dumps([s.model_dump(mode="json") for s in segments])


def _load_segments(raw: Optional[str]) -> List[Segment]:
    if not raw:
        return []
    return [Segment.model_validate(s) for s in json.loads(raw)]
