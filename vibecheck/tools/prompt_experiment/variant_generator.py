"""Stage 2: generate prompt-rewrite variants for the experiment-target issue."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from vibecheck.libs.config_loader import ConfigType, get_config
from vibecheck.libs.errors import GenerationError, InputError
from vibecheck.libs.llm import ModelGateway, PydanticAIGateway
from vibecheck.libs.trace import create_run_id, ensure_trace_dir, write_trace_file
from .dataset import DatasetLocator, locator_from_config
from .models import GenerationResult, Issue, VariantGeneration
from .prompts import AGENT_PROMPT, build_variant_instructions
from .reports import experiment_token, render_experiment

LOG = logging.getLogger(__name__)

STAGE_NAME = "generate-variants"
TRACE_FILENAME = "step2-generate-variants.json"
MAX_VARIANTS = 3


def load_prompting_guide(path: Optional[str]) -> str:
    """Read the optional prompting guide; a missing file means no guide."""
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        LOG.debug("Prompting guide not readable at %s", path)
        return ""


class VariantGenerator:
    """Ask the gateway for three structurally different prompt rewrites."""

    def __init__(self, configs: ConfigType,
                 gateway: Optional[ModelGateway] = None,
                 locator: Optional[DatasetLocator] = None,
                 agent_prompt: Optional[str] = None):
        self.configs = configs
        self.gateway = gateway or PydanticAIGateway(configs)
        self.locator = locator or locator_from_config(configs)
        self.agent_prompt = agent_prompt or get_config(
            "prompt_experiment.agent_prompt", configs, default=None) or AGENT_PROMPT
        self.max_variants = get_config("prompt_experiment.max_variants", configs, default=MAX_VARIANTS)
        self.guide_path = get_config("prompt_experiment.prompting_guide", configs, default=None)

    def build_input(self, issue: Issue) -> str:
        return "\n".join([
            f"Current Agent Prompt:\n{self.agent_prompt}",
            "",
            f"HIGH Severity Issue: {issue.issue}",
            f"Evidence: {issue.evidence}",
        ])

    async def generate_async(self, issue: Optional[Issue],
                             source_folder: Optional[str] = None,
                             run_id: Optional[str] = None) -> GenerationResult:
        """
        Generate variants for an issue.

        Files (experiment document and trace) are only written when
        source_folder is given; generation itself does not depend on it.

        Raises:
            ConfigurationError: If the gateway credential is missing
            InputError: If no issue is supplied
            GenerationError: If the model returns no parsable variants
        """
        started = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        self.gateway.ensure_available()

        if issue is None:
            raise InputError("Provide issue object from extract-issues step.")
        run_id = run_id or create_run_id()

        instructions = build_variant_instructions(load_prompting_guide(self.guide_path))
        model_input = self.build_input(issue)
        response = await self.gateway.invoke(instructions, [model_input], output_schema=VariantGeneration)

        parsed = response.structured
        if not isinstance(parsed, VariantGeneration) or not parsed.variants:
            LOG.error("[%s] could not parse variants from model output (%d chars)",
                      STAGE_NAME, len(response.text))
            raise GenerationError("Failed to parse variants.", raw=response.text)

        variants = parsed.variants[:self.max_variants]
        if len(parsed.variants) > len(variants):
            LOG.info("Model returned %d variants, keeping the first %d",
                     len(parsed.variants), len(variants))

        experiment_path: Optional[Path] = None
        if source_folder:
            token = experiment_token(issue.issue)
            experiment_path = self.locator.folder_path(source_folder) / f"Experiment_{token}.md"
            experiment_path.parent.mkdir(parents=True, exist_ok=True)
            experiment_path.write_text(
                render_experiment(token, source_folder, issue, variants), encoding="utf-8"
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.info("[%s] ok duration_ms=%d variants=%d", STAGE_NAME, duration_ms, len(variants))

        trace_dir = trace_path = None
        if source_folder:
            trace_dir = ensure_trace_dir(self.locator.root_dir, source_folder, run_id)
            trace_path = write_trace_file(trace_dir, TRACE_FILENAME, {
                "step": STAGE_NAME,
                "run_id": run_id,
                "started_at": started_at,
                "duration_ms": duration_ms,
                "model": self.gateway.model_name,
                "instructions": instructions,
                "input": model_input,
                "output_text": response.text,
                "parsed": parsed,
                "response": response.trace,
                "source_folder": source_folder,
                "experiment_path": str(experiment_path) if experiment_path else None,
            })

        return GenerationResult(
            variants=variants,
            issue=issue,
            run_id=run_id,
            trace_dir=str(trace_dir) if trace_dir else None,
            trace_path=str(trace_path) if trace_path else None,
            experiment_path=str(experiment_path) if experiment_path else None,
            duration_ms=duration_ms,
        )

    def generate(self, issue: Optional[Issue], source_folder: Optional[str] = None,
                 run_id: Optional[str] = None) -> GenerationResult:
        """Synchronous wrapper for generate_async."""
        return asyncio.run(self.generate_async(issue, source_folder, run_id))
