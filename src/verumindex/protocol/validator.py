"""Protocol rule checks for decoded payloads.

Advisory: decoding accepts any version-compatible payload, this reports which
protocol rules a payload breaks.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field

from verumindex.protocol.constants import (
    FUTURE_TIMESTAMP_SLACK_SECONDS,
    KASPA_ADDRESS_PATTERN,
    MAX_COMMENT_LENGTH,
    MAX_NICKNAME_LENGTH,
    MAX_PAYLOAD_SIZE,
    MAX_POST_LENGTH,
    PROTOCOL_CREATION_DATE,
    TRANSACTION_ID_PATTERN,
    TransactionType,
)
from verumindex.protocol.schemas import ProtocolPayload


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str
    code: str


@dataclass(frozen=True)
class ValidationResult:
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def is_valid_transaction_id(value: str | None) -> bool:
    return bool(value) and TRANSACTION_ID_PATTERN.match(value) is not None


def payload_size(payload: ProtocolPayload) -> int:
    return len(payload.model_dump_json(exclude_none=True).encode("utf-8"))


def validate_payload(payload: ProtocolPayload, *, now: float | None = None) -> ValidationResult:
    if now is None:
        now = time.time()
    errors: list[ValidationError] = []

    if not payload.verum:
        errors.append(ValidationError("verum", "Protocol version is required", "MISSING_VERSION"))

    if payload.timestamp is None:
        errors.append(ValidationError("timestamp", "Timestamp is required and must be a number", "INVALID_TIMESTAMP"))
    elif payload.timestamp < PROTOCOL_CREATION_DATE:
        errors.append(
            ValidationError("timestamp", "Timestamp cannot be before protocol creation date", "TIMESTAMP_TOO_OLD")
        )
    elif payload.timestamp > now + FUTURE_TIMESTAMP_SLACK_SECONDS:
        errors.append(
            ValidationError("timestamp", "Timestamp cannot be more than 5 minutes in the future", "TIMESTAMP_FUTURE")
        )

    size = payload_size(payload)
    if size > MAX_PAYLOAD_SIZE:
        errors.append(
            ValidationError("payload", f"Payload too large: {size} bytes (max {MAX_PAYLOAD_SIZE})", "PAYLOAD_TOO_LARGE")
        )

    checks = {
        TransactionType.START: _check_start,
        TransactionType.POST: _check_post,
        TransactionType.STORY: _check_story,
        TransactionType.SUBSCRIBE: _check_subscription,
        TransactionType.UNSUBSCRIBE: _check_subscription,
        TransactionType.LIKE: _check_like,
        TransactionType.COMMENT: _check_comment,
    }
    errors.extend(checks[payload.type](payload))
    return ValidationResult(errors=errors)


def _check_text(content: str | None, max_length: int, label: str) -> list[ValidationError]:
    if not content:
        return [ValidationError("content", f"{label} content is required", "MISSING_CONTENT")]
    if not content.strip():
        return [ValidationError("content", f"{label} content cannot be empty", "EMPTY_CONTENT")]
    if len(content) > max_length:
        return [ValidationError("content", f"{label} too long (max {max_length} characters)", "CONTENT_TOO_LONG")]
    return []


def _check_parent(parent_id: str | None) -> list[ValidationError]:
    if not parent_id:
        return [ValidationError("parent_id", "parent_id (post ID) is required", "MISSING_PARENT_ID")]
    if not is_valid_transaction_id(parent_id):
        return [ValidationError("parent_id", "Invalid transaction ID format", "INVALID_PARENT_ID")]
    return []


def _check_start(payload: ProtocolPayload) -> list[ValidationError]:
    errors = []
    if payload.prev_tx_id or payload.last_subscribe or payload.parent_id:
        errors.append(
            ValidationError(
                "chain_references", "START transaction should not have chain references", "INVALID_CHAIN_REFS"
            )
        )

    if not payload.content:
        errors.append(ValidationError("content", "User profile data is required", "MISSING_PROFILE"))
        return errors

    try:
        profile = json.loads(payload.content)
    except json.JSONDecodeError:
        errors.append(ValidationError("content", "Invalid JSON in user profile", "INVALID_JSON"))
        return errors

    nickname = profile.get("nickname") if isinstance(profile, dict) else None
    if not nickname or not isinstance(nickname, str):
        errors.append(ValidationError("content.nickname", "Nickname is required", "MISSING_NICKNAME"))
    elif len(nickname.strip()) > MAX_NICKNAME_LENGTH:
        errors.append(
            ValidationError(
                "content.nickname", f"Nickname too long (max {MAX_NICKNAME_LENGTH} characters)", "NICKNAME_TOO_LONG"
            )
        )

    avatar = profile.get("avatar") if isinstance(profile, dict) else None
    if avatar is not None and not isinstance(avatar, str):
        errors.append(ValidationError("content.avatar", "Avatar must be a base64 string", "INVALID_AVATAR"))
    return errors


def _check_post(payload: ProtocolPayload) -> list[ValidationError]:
    return _check_text(payload.content, MAX_POST_LENGTH, "Post")


def _check_story(payload: ProtocolPayload) -> list[ValidationError]:
    errors = []
    if not payload.content:
        errors.append(ValidationError("content", "Story content is required", "MISSING_CONTENT"))

    params = payload.params
    if not params:
        errors.append(ValidationError("params", "Story parameters are required", "MISSING_PARAMS"))
        return errors

    segment = params.get("segment")
    total = params.get("total")
    segment_ok = isinstance(segment, int) and not isinstance(segment, bool) and segment >= 1
    total_ok = isinstance(total, int) and not isinstance(total, bool) and total >= 1

    if not segment_ok:
        errors.append(ValidationError("params.segment", "Valid segment number is required", "INVALID_SEGMENT"))
    if not total_ok:
        errors.append(ValidationError("params.total", "Valid total segments is required", "INVALID_TOTAL"))
    if not isinstance(params.get("is_final"), bool):
        errors.append(ValidationError("params.is_final", "is_final flag is required", "MISSING_FINAL_FLAG"))
    if segment_ok and total_ok and segment > total:
        errors.append(
            ValidationError("params", "Segment number cannot exceed total segments", "INVALID_SEGMENT_RANGE")
        )
    if segment_ok and segment > 1 and not payload.parent_id:
        errors.append(
            ValidationError("parent_id", "parent_id is required for non-first segments", "MISSING_PARENT_ID")
        )
    return errors


def _check_subscription(payload: ProtocolPayload) -> list[ValidationError]:
    if not payload.content:
        return [ValidationError("content", "Target address is required", "MISSING_ADDRESS")]
    if not KASPA_ADDRESS_PATTERN.match(payload.content):
        return [ValidationError("content", "Invalid Kaspa address format", "INVALID_ADDRESS")]
    return []


def _check_like(payload: ProtocolPayload) -> list[ValidationError]:
    errors = []
    if payload.content is not None:
        errors.append(ValidationError("content", "Like transaction should have null content", "INVALID_CONTENT"))
    errors.extend(_check_parent(payload.parent_id))
    return errors


def _check_comment(payload: ProtocolPayload) -> list[ValidationError]:
    return _check_text(payload.content, MAX_COMMENT_LENGTH, "Comment") + _check_parent(payload.parent_id)
