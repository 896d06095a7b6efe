"""LLM utilities: agent construction and the model gateway used by every stage."""


import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Type, Union

from pydantic import BaseModel, ValidationError
from pydantic_ai import Agent, NativeOutput, capture_run_messages
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.messages import (
    ModelMessage,
    ModelMessagesTypeAdapter,
    ModelRequest,
    ModelResponse,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIResponsesModel, OpenAIResponsesModelSettings

from vibecheck.libs.config_loader import ConfigType, get_config
from vibecheck.libs.errors import ConfigurationError


# Fix up logging level for httpx to WARNING to reduce noise
logging.getLogger("httpx").setLevel(logging.WARNING)

LOG = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


def resolve_api_key(configs: ConfigType) -> Optional[str]:
    """Return the OpenAI key from config, falling back to the environment."""
    return get_config("openai.api_key", configs, default=None) or os.environ.get("OPENAI_API_KEY")


def create_agent(configs: ConfigType,
                 model: Optional[Union[str, Model]] = None,
                 settings_dict: Optional[Dict[str, Any]] = None,
                 instructions: Optional[str] = None,
                 output_type: Any = str) -> Agent:
    """
    Create a pydantic-ai Agent configured with OpenAI models.

    Args:
        configs: Configuration dictionary (required)
        model: Model name or a ready pydantic-ai Model (overrides config value)
        settings_dict: Pydantic AI settings dict (overrides config values)
        instructions: Instructions sent with every request (optional)
        output_type: Output type for the agent (plain text by default)

    Returns:
        Configured Agent

    Raises:
        ConfigurationError: If the OpenAI API key is not found
    """
    api_key = resolve_api_key(configs)
    if not api_key:
        raise ConfigurationError("Missing OPENAI_API_KEY.")
    organization = get_config("openai.organization", configs, default=None)
    model = model or get_config("openai.model", configs, default=DEFAULT_MODEL)
    base_settings = get_config("openai.pydantic_ai_settings", configs, default={}) or {}

    os.environ['OPENAI_API_KEY'] = api_key
    if organization:
        os.environ['OPENAI_ORG_ID'] = organization

    settings_dict = base_settings | (settings_dict or {})
    model_settings = OpenAIResponsesModelSettings(**settings_dict) if settings_dict else None
    openai_model = model if isinstance(model, Model) else OpenAIResponsesModel(model)
    return Agent(
        model=openai_model,
        model_settings=model_settings,
        instructions=instructions,
        output_type=output_type,
        retries=0,
    )


def parse_json_output(raw_text: str, output_schema: Type[BaseModel]) -> Optional[BaseModel]:
    """Validate model text against a schema, tolerating markdown code fences.

    Returns None when the text is empty, not JSON, or does not match.
    """
    text = (raw_text or "").strip()
    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    if not text:
        return None
    try:
        return output_schema.model_validate_json(text)
    except (ValidationError, json.JSONDecodeError, ValueError):
        return None


def _response_text(messages: Sequence[ModelMessage]) -> str:
    """Join the text parts of the last model response."""
    for message in reversed(messages):
        if isinstance(message, ModelResponse):
            return "".join(part.content for part in message.parts if isinstance(part, TextPart))
    return ""


def _dump_messages(messages: Sequence[ModelMessage]) -> Any:
    try:
        return ModelMessagesTypeAdapter.dump_python(list(messages), mode="json")
    except Exception as e:  # pylint: disable=broad-except
        LOG.debug("Could not serialize model messages: %s", e)
        return [repr(m) for m in messages]


@dataclass
class GatewayResponse:
    """Result of a single gateway call."""
    text: str
    structured: Optional[BaseModel] = None
    trace: Any = field(default_factory=dict)


class ModelGateway:
    """Narrow interface over a text / structured-output generation capability.

    Stages only ever call `ensure_available` and `invoke`, so tests can swap in
    a deterministic implementation.
    """

    model_name: str = "unknown"

    def ensure_available(self) -> None:
        """Raise ConfigurationError when the gateway cannot be used."""
        raise NotImplementedError

    async def invoke(self,
                     instructions: str,
                     messages: Sequence[str],
                     output_schema: Optional[Type[BaseModel]] = None) -> GatewayResponse:
        """Send user messages in order under the given instructions.

        When output_schema is given the model is asked for JSON matching it;
        `structured` is None if the output did not conform.
        """
        raise NotImplementedError


class PydanticAIGateway(ModelGateway):
    """Gateway backed by pydantic-ai and the OpenAI Responses API."""

    def __init__(self, configs: ConfigType,
                 model: Optional[Union[str, Model]] = None,
                 settings: Optional[Dict[str, Any]] = None):
        """
        Initialize the gateway.

        Args:
            configs: Configuration dictionary (required)
            model: Model to use (overrides config value)
            settings: Pydantic AI settings dict (overrides config values)
        """
        self.configs = configs
        self.model = model or get_config("openai.model", configs, default=DEFAULT_MODEL)
        self.settings = settings
        self.model_name = self.model if isinstance(self.model, str) else self.model.model_name

    def ensure_available(self) -> None:
        if not resolve_api_key(self.configs):
            raise ConfigurationError("Missing OPENAI_API_KEY.")

    async def invoke(self,
                     instructions: str,
                     messages: Sequence[str],
                     output_schema: Optional[Type[BaseModel]] = None) -> GatewayResponse:
        if not messages:
            raise ValueError("At least one input message is required")

        output_type: Any = str
        if output_schema is not None:
            output_type = NativeOutput(output_schema, strict=True)
        agent = create_agent(
            configs=self.configs,
            model=self.model,
            settings_dict=self.settings,
            instructions=instructions or None,
            output_type=output_type,
        )

        history: List[ModelMessage] = []
        if len(messages) > 1:
            history.append(ModelRequest(parts=[UserPromptPart(content=m) for m in messages[:-1]]))

        LOG.debug("Calling %s with %d message(s), schema=%s", self.model_name, len(messages),
                  output_schema.__name__ if output_schema else None)

        with capture_run_messages() as run_messages:
            try:
                result = await agent.run(messages[-1], message_history=history or None)
            except UnexpectedModelBehavior as e:
                if output_schema is None:
                    raise
                # Output failed schema validation; keep the raw text for diagnostics
                raw_text = _response_text(run_messages)
                LOG.warning("Model output did not match %s: %s", output_schema.__name__, e)
                return GatewayResponse(
                    text=raw_text,
                    structured=parse_json_output(raw_text, output_schema),
                    trace={"model": self.model_name, "error": str(e),
                           "messages": _dump_messages(run_messages)},
                )

        all_messages = result.all_messages()
        if output_schema is None:
            text = str(result.output)
            structured = None
        else:
            structured = result.output
            text = _response_text(all_messages) or structured.model_dump_json()
        return GatewayResponse(
            text=text,
            structured=structured,
            trace={"model": self.model_name, "messages": _dump_messages(all_messages)},
        )
