from proactive_listener.llm.client import (
    LLMCallError,
    LLMClient,
    LLMError,
    LLMParseError,
    ToolSpec,
)
from proactive_listener.llm.contracts import (
    CriticalityVerdict,
    DigestResult,
    WaitingCheckMatch,
    parse_tool_arguments,
)

__all__ = [
    "LLMClient",
    "LLMError",
    "LLMCallError",
    "LLMParseError",
    "ToolSpec",
    "CriticalityVerdict",
    "DigestResult",
    "WaitingCheckMatch",
    "parse_tool_arguments",
]
