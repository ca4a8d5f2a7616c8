from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from pricewatch.errors import OracleParseError
from pricewatch.oracles.base import Advice, LookupFailure, LookupNotFound, LookupOutcome, LookupReply, LookupSuccess

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


def validate_lookup_reply(raw: Any) -> LookupOutcome:
    if raw is None:
        return LookupNotFound(reason="Product not listed on marketplace")
    if isinstance(raw, LookupReply):
        reply = raw
    elif isinstance(raw, dict):
        try:
            reply = LookupReply.model_validate(raw)
        except PydanticValidationError as exc:
            return LookupFailure(reason=f"Malformed lookup reply: {exc.error_count()} invalid field(s)")
    else:
        return LookupFailure(reason=f"Unexpected lookup reply type: {type(raw).__name__}")

    if reply.price_inc_tax is None and reply.price_ex_tax is None:
        return LookupNotFound(reason="No price reported", reply=reply)
    return LookupSuccess(reply=reply)


def extract_json_object(text: str) -> str:
    cleaned = CODE_FENCE_RE.sub("", text.strip()).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        return cleaned[first : last + 1]
    return cleaned


def parse_advice(raw: Any) -> Advice:
    """Validate a recommendation oracle reply.

    Accepts the model itself, a mapping, or free text that carries a JSON
    object (optionally wrapped in markdown code fences).
    """
    if isinstance(raw, Advice):
        return raw
    payload = raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            payload = json.loads(extract_json_object(text))
        except json.JSONDecodeError as exc:
            raise OracleParseError("Recommendation reply is not valid JSON", details={"error": str(exc)}) from exc
    if not isinstance(payload, dict):
        raise OracleParseError(f"Unexpected recommendation reply type: {type(payload).__name__}")
    try:
        return Advice.model_validate(payload)
    except PydanticValidationError as exc:
        raise OracleParseError("Recommendation reply failed validation", details={"errors": exc.errors()}) from exc
