"""Verum protocol constants."""

import re
from enum import Enum

VERUM_VERSION = "0.2"

# Current version plus the preceding minor version.
SUPPORTED_PROTOCOL_VERSIONS = ("0.1", VERUM_VERSION)

# August 1, 2024 00:00:00 UTC. No protocol transaction can predate it.
PROTOCOL_CREATION_DATE = 1722470400

# Script type of data-carrying outputs on the base ledger.
NULL_DATA_SCRIPT_TYPE = "nulldata"

# OP_RETURN prefix on hex-encoded payloads.
NULL_DATA_PREFIX = "6a"

ENGAGEMENT_SCAN_HARD_CAP = 1000

MAX_PAYLOAD_SIZE = 1000
MAX_POST_LENGTH = 500
MAX_COMMENT_LENGTH = 300
MAX_NICKNAME_LENGTH = 50
FUTURE_TIMESTAMP_SLACK_SECONDS = 5 * 60

TRANSACTION_ID_PATTERN = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)
KASPA_ADDRESS_PATTERN = re.compile(r"^kaspa(test|dev)?:[a-z0-9]{61,63}$")


class TransactionType(str, Enum):
    START = "start"
    POST = "post"
    STORY = "story"
    COMMENT = "comment"
    LIKE = "like"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"


SUBSCRIPTION_TYPES = frozenset({TransactionType.SUBSCRIBE, TransactionType.UNSUBSCRIBE})


def is_compatible_version(version: str) -> bool:
    return version in SUPPORTED_PROTOCOL_VERSIONS
