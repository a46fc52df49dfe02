"""Reduce raw agent stdout to a response string.

``claude --output-format json`` prints a single JSON object whose
``result`` field holds the final answer. Anything else is kept verbatim.
"""
from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Union

# Checked in order; the first non-empty string wins.
RESPONSE_FIELDS = ("result", "content", "message")


@dataclass(frozen=True)
class StructuredOutput:
    fields: dict[str, Any]
    text: str


@dataclass(frozen=True)
class RawOutput:
    text: str


AgentOutput = Union[StructuredOutput, RawOutput]


def decode_output(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def parse_agent_output(data: bytes) -> AgentOutput:
    text = decode_output(data)
    try:
        parsed = json.loads(text)
    except ValueError:
        return RawOutput(text)
    if not isinstance(parsed, dict):
        return RawOutput(text)
    return StructuredOutput(fields=parsed, text=text)


def derive_response(output: AgentOutput) -> str:
    if isinstance(output, StructuredOutput):
        for key in RESPONSE_FIELDS:
            value = output.fields.get(key)
            if isinstance(value, str) and value:
                return value
    return output.text
