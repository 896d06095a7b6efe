"""End-to-end orchestration: extract -> generate variants -> replay and judge."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from vibecheck.libs.config_loader import ConfigType
from vibecheck.libs.errors import InputError
from vibecheck.libs.llm import ModelGateway, PydanticAIGateway
from vibecheck.libs.trace import create_run_id, trace_dir_for, write_trace_file
from .dataset import DatasetLocator, locator_from_config
from .investigator import ComplaintInvestigator
from .issue_extractor import IssueExtractor
from .judge import ReplayJudge
from .models import ExtractionResult, GenerationResult, JudgeResult, Run
from .variant_generator import VariantGenerator

LOG = logging.getLogger(__name__)

RUN_FILENAME = "pipeline.json"


class PipelineRun(BaseModel):
    """Everything one pipeline execution produced."""
    run: Run
    extraction: ExtractionResult
    generation: GenerationResult
    judgment: JudgeResult
    duration_ms: int

    @property
    def winner(self) -> Optional[str]:
        return self.judgment.winner


class PromptExperimentPipeline:
    """Run the three stages against one dataset folder under a single run id."""

    def __init__(self, configs: ConfigType,
                 gateway: Optional[ModelGateway] = None,
                 locator: Optional[DatasetLocator] = None,
                 agent_prompt: Optional[str] = None):
        """
        Initialize the pipeline.

        Args:
            configs: Configuration dictionary (required)
            gateway: Model gateway shared by all stages (pydantic-ai by default)
            locator: Dataset locator shared by all stages (folder scan by default)
            agent_prompt: Production prompt to improve (overrides config value)
        """
        self.configs = configs
        self.gateway = gateway or PydanticAIGateway(configs)
        self.locator = locator or locator_from_config(configs)
        self.extractor = IssueExtractor(configs, self.gateway, self.locator)
        self.generator = VariantGenerator(configs, self.gateway, self.locator, agent_prompt)
        self.judge = ReplayJudge(configs, self.gateway, self.locator, agent_prompt)
        self.investigator = ComplaintInvestigator(configs, locator=self.locator,
                                                  gateway=gateway)

    async def run_async(self, source_folder: Optional[str] = None) -> PipelineRun:
        """
        Execute extract -> generate -> judge.

        Args:
            source_folder: Dataset folder (latest when omitted)

        Returns:
            PipelineRun with every stage result and the Run record

        Raises:
            ConfigurationError: If the gateway credential is missing
            InputError: If the dataset is empty or a stage yields nothing to continue with
            ExtractionError, GenerationError: If model output cannot be parsed
        """
        started = time.monotonic()
        self.gateway.ensure_available()

        handle = self.locator.resolve(source_folder)
        if handle is None:
            raise InputError("No complaint-intake.json found or it's empty.")
        folder = handle.folder
        run_id = create_run_id()
        run = Run(
            run_id=run_id,
            source_folder=folder,
            trace_dir=str(trace_dir_for(self.locator.root_dir, folder, run_id)),
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        LOG.info("Starting run %s on %s", run.run_id, folder)

        extraction = await self.extractor.extract_async(folder, run.run_id)
        run.record_stage("extract-issues", extraction.trace_path)
        target = extraction.issues[0] if extraction.issues else None
        if target is None:
            raise InputError("Issue extraction produced no experiment target.")

        generation = await self.generator.generate_async(target, folder, run.run_id)
        run.record_stage("generate-variants", generation.trace_path)
        if not generation.variants:
            raise InputError("Variant generation produced no variants.")

        judgment = await self.judge.judge_async(generation.variants, target, run.run_id, folder)
        run.record_stage("judge", judgment.trace_path)
        run.winner = judgment.winner

        duration_ms = int((time.monotonic() - started) * 1000)
        write_trace_file(run.trace_dir, RUN_FILENAME, run)
        LOG.info("Run %s finished in %dms, winner=%s", run.run_id, duration_ms, run.winner)

        return PipelineRun(run=run, extraction=extraction, generation=generation,
                           judgment=judgment, duration_ms=duration_ms)

    def run(self, source_folder: Optional[str] = None) -> PipelineRun:
        """Synchronous wrapper for run_async."""
        return asyncio.run(self.run_async(source_folder))
