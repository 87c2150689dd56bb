"""Decode Verum payloads embedded in ledger transactions.

Decoding never raises: anything that is not a well-formed, version-compatible
protocol payload decodes to ``None``.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog
from pydantic import ValidationError

from verumindex.models import ParsedTransaction, RawTransaction
from verumindex.protocol.constants import (
    NULL_DATA_PREFIX,
    NULL_DATA_SCRIPT_TYPE,
    TransactionType,
    is_compatible_version,
)
from verumindex.protocol.schemas import ProtocolPayload

logger = structlog.get_logger()

_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")
_decoder = json.JSONDecoder()


def payload_to_text(data: str) -> str:
    """Turn a raw payload field into text.

    Hex payloads have the null-data prefix stripped and are UTF-8 decoded with
    invalid sequences replaced. Anything else is assumed to be text already.
    """
    if not _HEX_PATTERN.match(data):
        return data

    hex_data = data[len(NULL_DATA_PREFIX) :] if data.lower().startswith(NULL_DATA_PREFIX) else data
    raw = bytes(int(hex_data[i : i + 2], 16) for i in range(0, len(hex_data), 2))
    return raw.decode("utf-8", errors="replace")


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first balanced JSON object found in text."""
    start = text.find("{")
    while start != -1:
        try:
            value, _end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def decode_payload(data: str | bytes | None) -> ProtocolPayload | None:
    if not data:
        return None
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    obj = extract_json_object(payload_to_text(data))
    if obj is None:
        return None

    version = obj.get("verum")
    if not isinstance(version, str) or not is_compatible_version(version):
        return None

    try:
        return ProtocolPayload.model_validate(obj)
    except ValidationError as exc:
        logger.debug("Rejected malformed protocol payload", errors=exc.error_count())
        return None


def get_author(raw: RawTransaction, payload: ProtocolPayload | None = None) -> str:
    """Infer the sender address from output structure.

    Returns an empty string when the author cannot be resolved.
    """
    if payload is None:
        payload = decode_payload(raw.payload)

    outputs = raw.outputs

    # START is a self-transaction: sender and recipient are the same address.
    if payload is not None and payload.type == TransactionType.START:
        for output in outputs:
            if output.script_type != NULL_DATA_SCRIPT_TYPE and output.address:
                return output.address
        return ""

    # output[0] pays the counterparty, output[1] returns change to the sender.
    if len(outputs) >= 2:
        if outputs[0].address and outputs[1].address:
            return outputs[1].address

    if len(outputs) == 1 and outputs[0].address:
        return outputs[0].address

    return ""


def parse_transaction(raw: RawTransaction) -> ParsedTransaction | None:
    """Project a raw transaction, with or without a protocol payload."""
    if not raw.transaction_id or not raw.block_time:
        return None

    payload = decode_payload(raw.payload)
    return ParsedTransaction(
        transaction_id=raw.transaction_id,
        author_address=get_author(raw, payload),
        block_time=raw.block_time,
        accepted=raw.is_accepted,
        payload=payload,
    )


def parse_verum_transaction(raw: RawTransaction) -> ParsedTransaction | None:
    """Like parse_transaction, but only for protocol transactions."""
    parsed = parse_transaction(raw)
    if parsed is None or parsed.payload is None:
        return None
    return parsed
