"""LLM client abstraction for structured calls against Gemini or Claude."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "proactive-listener"


class LLMError(Exception):
    """Base class for every failure coming out of the LLM layer."""


class LLMCallError(LLMError):
    """The provider call itself failed (network, auth, quota, server error)."""


class LLMParseError(LLMError):
    """The provider answered, but not in the shape the tool contract demands."""


@dataclass(frozen=True)
class ToolSpec:
    """A single function the model is forced to call.

    `parameters` is a JSON schema object describing the call arguments.
    """

    name: str
    description: str
    parameters: Dict[str, Any]


def _get_api_key(env_var: str, keychain_account: str) -> Optional[str]:
    """Load API key from environment variable or macOS Keychain.

    Checks env var first, then Keychain.
    """
    key = os.environ.get(env_var)
    if key:
        return key

    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-a", keychain_account, "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True, text=True,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except FileNotFoundError:
        pass

    return None


class LLMClient:
    """Unified interface for calling Gemini or Claude APIs."""

    def __init__(
        self,
        provider: str = "gemini",
        model: Optional[str] = None,
        thinking_level: str = "off",
    ):
        self.provider = provider.lower()
        self.thinking_level = thinking_level

        if self.provider == "gemini":
            self.model = model or "gemini-3-flash-preview"
            self._init_gemini()
        elif self.provider == "claude":
            self.model = model or "claude-haiku-4-5-20251001"
            self._init_claude()
        else:
            raise ValueError(f"Unsupported provider: {provider}. Use 'gemini' or 'claude'.")

    def _init_gemini(self):
        try:
            from google import genai
        except ImportError:
            raise ImportError("Install google-genai: pip install google-genai")

        api_key = _get_api_key("GEMINI_API_KEY", "gemini")
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not found. Either:\n"
                "  • Store it in the Keychain under service 'proactive-listener'\n"
                "  • Or:  export GEMINI_API_KEY='your-key'"
            )
        self._gemini_client = genai.Client(api_key=api_key)

    def _init_claude(self):
        try:
            import anthropic
        except ImportError:
            raise ImportError("Install anthropic: pip install anthropic")

        api_key = _get_api_key("ANTHROPIC_API_KEY", "claude")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not found. Either:\n"
                "  • Store it in the Keychain under service 'proactive-listener'\n"
                "  • Or:  export ANTHROPIC_API_KEY='sk-ant-...'"
            )
        self._claude_client = anthropic.Anthropic(api_key=api_key)

    def _gemini_thinking_config(self):
        from google.genai import types

        thinking_budgets = {
            "off": 0,
            "minimal": 128,
            "low": 1024,
            "medium": 4096,
        }
        # gemini-2.5-* and gemini-3-* support thinking; 2.0 does not
        model_supports_thinking = any(
            self.model.startswith(p) for p in ("gemini-2.5", "gemini-3")
        )
        if not model_supports_thinking:
            return None
        return types.ThinkingConfig(thinking_budget=thinking_budgets.get(self.thinking_level, 0))

    # ══════════════════════════════════════════════════════════════
    # Plain text
    # ══════════════════════════════════════════════════════════════

    def run(self, system_prompt: str, user_message: str, max_tokens: int = 2048) -> str:
        """Send system + user message to the LLM and return the text response."""
        try:
            if self.provider == "gemini":
                return self._run_gemini(system_prompt, user_message, max_tokens)
            return self._run_claude(system_prompt, user_message, max_tokens)
        except LLMError:
            raise
        except Exception as exc:
            raise LLMCallError(f"{self.provider} call failed: {exc}") from exc

    def _run_gemini(self, system_prompt: str, user_message: str, max_tokens: int) -> str:
        from google.genai import types

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            thinking_config=self._gemini_thinking_config(),
            max_output_tokens=max_tokens,
        )
        response = self._gemini_client.models.generate_content(
            model=self.model,
            contents=user_message,
            config=config,
        )

        # Extract text from response parts (skip thinking parts)
        text_parts = []
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if part.text and not getattr(part, "thought", False):
                    text_parts.append(part.text)

        return "".join(text_parts)

    def _run_claude(self, system_prompt: str, user_message: str, max_tokens: int) -> str:
        response = self._claude_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        return response.content[0].text

    # ══════════════════════════════════════════════════════════════
    # Forced tool call
    # ══════════════════════════════════════════════════════════════

    def run_tool(
        self,
        system_prompt: str,
        user_message: str,
        tool: ToolSpec,
        temperature: float = 0.0,
        max_tokens: int = 200,
    ) -> Dict[str, Any]:
        """Force the model to call `tool` and return the call arguments.

        Raises LLMCallError when the provider call fails and LLMParseError
        when the response carries no usable tool call.
        """
        try:
            if self.provider == "gemini":
                args = self._run_tool_gemini(system_prompt, user_message, tool, temperature, max_tokens)
            else:
                args = self._run_tool_claude(system_prompt, user_message, tool, temperature, max_tokens)
        except LLMError:
            raise
        except Exception as exc:
            raise LLMCallError(f"{self.provider} tool call '{tool.name}' failed: {exc}") from exc

        logger.debug("Tool %s returned %s", tool.name, json.dumps(args, ensure_ascii=False)[:500])
        return args

    def _run_tool_gemini(
        self,
        system_prompt: str,
        user_message: str,
        tool: ToolSpec,
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        from google.genai import types

        declaration = types.FunctionDeclaration(
            name=tool.name,
            description=tool.description,
            parameters_json_schema=tool.parameters,
        )
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=max_tokens,
            thinking_config=self._gemini_thinking_config(),
            tools=[types.Tool(function_declarations=[declaration])],
            tool_config=types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(
                    mode="ANY",
                    allowed_function_names=[tool.name],
                ),
            ),
        )
        response = self._gemini_client.models.generate_content(
            model=self.model,
            contents=user_message,
            config=config,
        )

        for call in response.function_calls or []:
            if call.name == tool.name:
                return dict(call.args or {})
        raise LLMParseError(f"No {tool.name} call in Gemini response")

    def _run_tool_claude(
        self,
        system_prompt: str,
        user_message: str,
        tool: ToolSpec,
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        response = self._claude_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
            tools=[{
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }],
            tool_choice={"type": "tool", "name": tool.name},
        )

        for block in response.content:
            if block.type == "tool_use" and block.name == tool.name:
                if not isinstance(block.input, dict):
                    raise LLMParseError(f"{tool.name} arguments are not an object")
                return dict(block.input)
        raise LLMParseError(f"No {tool.name} call in Claude response")
