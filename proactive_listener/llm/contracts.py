"""Validated shapes of the structured LLM outputs the engine consumes.

Tool-call arguments arrive either as a dict (SDK-parsed) or as a JSON
string. Strings go through json_repair first, then every payload goes
through pydantic. Anything that does not validate becomes LLMParseError.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from proactive_listener.llm.client import LLMParseError

logger = logging.getLogger(__name__)

SMS_LIMIT = 160
VOICE_OPENER_LIMIT = 100
EXPLANATION_LIMIT = 120

ModelT = TypeVar("ModelT", bound=BaseModel)


def _as_text(v: Any) -> str:
    if v is None:
        return ""
    return str(v).strip()


class WaitingCheckMatch(BaseModel):
    """Result of matching one message against the user's waiting checks."""

    waiting_check_id: Optional[int] = None
    sms_message: str = ""
    first_message: str = ""
    match_explanation: str = ""

    @field_validator("waiting_check_id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        # Providers send numbers as floats ("3.0") or strings ("3", "null")
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, str):
            v = v.strip()
            if not v or v.lower() in ("null", "none"):
                return None
        try:
            as_float = float(v)
        except (TypeError, ValueError):
            raise ValueError(f"waiting_check_id is not a number: {v!r}")
        if as_float != int(as_float):
            raise ValueError(f"waiting_check_id is not an integer: {v!r}")
        return int(as_float)

    @field_validator("sms_message", mode="before")
    @classmethod
    def truncate_sms(cls, v):
        return _as_text(v)[:SMS_LIMIT]

    @field_validator("first_message", mode="before")
    @classmethod
    def truncate_first(cls, v):
        return _as_text(v)[:VOICE_OPENER_LIMIT]

    @field_validator("match_explanation", mode="before")
    @classmethod
    def truncate_explanation(cls, v):
        return _as_text(v)[:EXPLANATION_LIMIT]

    @property
    def matched(self) -> bool:
        return self.waiting_check_id is not None


class CriticalityVerdict(BaseModel):
    """Binary criticality decision plus the notification copy."""

    is_critical: bool
    what_to_inform: str = ""
    first_message: str = ""

    @field_validator("is_critical", mode="before")
    @classmethod
    def strict_bool(cls, v):
        if isinstance(v, bool):
            return v
        if isinstance(v, str) and v.strip().lower() in ("true", "false"):
            return v.strip().lower() == "true"
        raise ValueError(f"is_critical must be a boolean, got {v!r}")

    @field_validator("what_to_inform", mode="before")
    @classmethod
    def truncate_inform(cls, v):
        return _as_text(v)[:SMS_LIMIT]

    @field_validator("first_message", mode="before")
    @classmethod
    def truncate_first(cls, v):
        return _as_text(v)[:VOICE_OPENER_LIMIT]

    @model_validator(mode="after")
    def blank_copy_when_not_critical(self):
        if not self.is_critical:
            self.what_to_inform = ""
            self.first_message = ""
        return self


class DigestResult(BaseModel):
    """The composed SMS digest."""

    digest: str

    @field_validator("digest", mode="before")
    @classmethod
    def non_empty(cls, v):
        text = _as_text(v)
        if not text:
            raise ValueError("digest is empty")
        return text


def _clean_llm_output(raw: str) -> str:
    """Strip thinking tags and markdown fences from LLM output."""
    cleaned = raw.strip()
    if "<think>" in cleaned:
        parts = cleaned.split("</think>")
        cleaned = parts[-1].strip() if len(parts) > 1 else cleaned
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    return cleaned


def parse_tool_arguments(raw: Any, model: Type[ModelT]) -> ModelT:
    """Validate tool-call arguments against `model`.

    Raises LLMParseError for anything that is not an object matching the model.
    """
    payload = raw
    if isinstance(raw, str):
        cleaned = _clean_llm_output(raw)
        if not cleaned:
            raise LLMParseError(f"Empty {model.__name__} arguments")
        try:
            payload = repair_json(cleaned, return_objects=True)
        except Exception as exc:
            raise LLMParseError(f"Unparseable {model.__name__} arguments: {cleaned[:200]}") from exc

    if not isinstance(payload, dict):
        raise LLMParseError(f"{model.__name__} arguments must be an object, got {type(payload).__name__}")

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Rejected %s payload: %s", model.__name__, str(payload)[:300])
        raise LLMParseError(f"Invalid {model.__name__}: {exc.error_count()} error(s)") from exc
