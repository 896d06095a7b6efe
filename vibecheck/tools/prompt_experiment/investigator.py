"""Investigate a single complaint: what went wrong and which prompt section caused it."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Union

from vibecheck.libs.config_loader import ConfigType, get_config
from vibecheck.libs.errors import ExtractionError, InputError
from vibecheck.libs.llm import ModelGateway, PydanticAIGateway
from .dataset import DatasetLocator, locator_from_config
from .models import Investigation, InvestigationResult, Message, Transcript
from .prompts import AGENT_PROMPT, INVESTIGATION_INSTRUCTIONS

LOG = logging.getLogger(__name__)

TranscriptInput = Union[str, Transcript, List[Any], Dict[str, Any], None]


def render_transcript(value: TranscriptInput) -> str:
    """Numbered 'role: content' lines for a transcript given in any accepted shape."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Transcript):
        messages: List[Any] = list(value.messages)
    elif isinstance(value, dict):
        messages = value.get("messages") or []
    else:
        messages = value
    lines = []
    for index, entry in enumerate(messages, start=1):
        if isinstance(entry, str):
            if entry.strip():
                lines.append(f"{index}. {entry.strip()}")
            continue
        if isinstance(entry, Message):
            role, content = entry.role, entry.content
        elif isinstance(entry, dict):
            role = entry.get("role") if isinstance(entry.get("role"), str) else "unknown"
            content = entry.get("content")
            if content is not None and not isinstance(content, str):
                content = json.dumps(content)
        else:
            continue
        if content and content.strip():
            lines.append(f"{index}. {role}: {content.strip()}")
    return "\n".join(lines)


class ComplaintInvestigator:
    """Ask the gateway for an analysis and hypothesis about one complaint."""

    def __init__(self, configs: ConfigType,
                 gateway: Optional[ModelGateway] = None,
                 locator: Optional[DatasetLocator] = None):
        self.configs = configs
        self.gateway = gateway or PydanticAIGateway(
            configs, model=get_config("investigation.model", configs, default=None))
        self.locator = locator or locator_from_config(configs)
        self.default_prompt = get_config(
            "prompt_experiment.agent_prompt", configs, default=None) or AGENT_PROMPT

    async def investigate_async(self, complaint: Optional[str] = None,
                                transcript: TranscriptInput = None,
                                prompt: Optional[str] = None,
                                use_latest: bool = False,
                                debug: bool = False) -> InvestigationResult:
        """
        Investigate a complaint against the prompt that produced the conversation.

        Missing complaint/transcript values are filled from the latest dataset
        (its first complaint and its last transcript); the prompt defaults to
        the production agent prompt.

        Raises:
            ConfigurationError: If the gateway credential is missing
            InputError: If complaint or transcript are still missing after fallback
            ExtractionError: If the model output is unparsable
        """
        self.gateway.ensure_available()

        complaint = (complaint or "").strip()
        transcript_text = render_transcript(transcript)
        prompt = (prompt or "").strip() or self.default_prompt

        handle = self.locator.resolve()
        latest_transcript = None
        if handle is not None and handle.dataset.transcripts:
            latest_transcript = handle.dataset.transcripts[-1]
        if use_latest or not complaint or not transcript_text:
            if handle is not None:
                if not complaint and handle.dataset.complaints:
                    complaint = handle.dataset.complaints[0].strip()
                if not transcript_text and latest_transcript is not None:
                    transcript_text = render_transcript(latest_transcript)

        if not complaint or not transcript_text:
            raise InputError("Please provide complaint, transcript, and prompt in the request body, "
                             "or ensure complaint-intake.json is available.")

        model_input = f"Complaint:\n{complaint}\n\nTranscript:\n{transcript_text}\n\nSystem Prompt:\n{prompt}"
        response = await self.gateway.invoke(INVESTIGATION_INSTRUCTIONS, [model_input],
                                             output_schema=Investigation)
        parsed = response.structured
        if not isinstance(parsed, Investigation):
            raise ExtractionError("Failed to parse model output.", raw=response.text if debug else None)

        trace: Any = response.trace if debug else None
        return InvestigationResult(
            analysis=parsed.analysis,
            hypothesis=parsed.hypothesis,
            prompt_section=parsed.prompt_section,
            date=handle.date if handle else None,
            source_folder=handle.folder if handle else None,
            transcript_id=latest_transcript.id if latest_transcript else None,
            trace=trace,
        )

    def investigate(self, complaint: Optional[str] = None, transcript: TranscriptInput = None,
                    prompt: Optional[str] = None, use_latest: bool = False,
                    debug: bool = False) -> InvestigationResult:
        """Synchronous wrapper for investigate_async."""
        return asyncio.run(self.investigate_async(complaint, transcript, prompt, use_latest, debug))
