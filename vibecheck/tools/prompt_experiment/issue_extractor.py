"""Stage 1: extract the experiment-target issue from a complaint dataset."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from vibecheck.libs.config_loader import ConfigType
from vibecheck.libs.errors import ExtractionError, InputError
from vibecheck.libs.llm import ModelGateway, PydanticAIGateway
from vibecheck.libs.trace import create_run_id, ensure_trace_dir, write_trace_file
from .dataset import DatasetLocator, locator_from_config
from .models import DatasetHandle, ExtractionResult, Issue, IssueExtraction
from .prompts import ISSUE_EXTRACTION_INSTRUCTIONS
from .reports import render_summary

LOG = logging.getLogger(__name__)

STAGE_NAME = "extract-issues"
TRACE_FILENAME = "step1-extract-issues.json"
SUMMARY_FILENAME = "summary.md"


def select_issues(issues: Sequence[Issue]) -> List[Issue]:
    """
    Reduce extracted issues to the experiment target plus one secondary issue.

    The first high-severity issue wins regardless of position (issues[0] if none
    is high); the secondary is the first medium/low issue other than the target.
    """
    if not issues:
        return []
    target = next((i for i in issues if i.severity == "high"), issues[0])
    secondary = next(
        (i for i in issues if i is not target and i.severity in ("medium", "low")),
        None,
    )
    return [target, secondary] if secondary else [target]


def build_extraction_input(handle: DatasetHandle) -> str:
    """Condensed view of complaints and transcripts sent to the model."""
    dataset = handle.dataset
    complaints_block = "\n".join(f"{i}. {c}" for i, c in enumerate(dataset.complaints, start=1))
    transcripts_block = "\n\n".join(
        f'[{t.id}] "{t.complaint}"\n{t.render(indent="  ")}' for t in dataset.transcripts
    )
    return f"Date: {handle.date}\n\nComplaints:\n{complaints_block}\n\nTranscripts:\n{transcripts_block}"


class IssueExtractor:
    """Ask the gateway for the single most important issue in a dataset."""

    def __init__(self, configs: ConfigType,
                 gateway: Optional[ModelGateway] = None,
                 locator: Optional[DatasetLocator] = None):
        self.configs = configs
        self.gateway = gateway or PydanticAIGateway(configs)
        self.locator = locator or locator_from_config(configs)

    async def extract_async(self, source_folder: Optional[str] = None,
                            run_id: Optional[str] = None) -> ExtractionResult:
        """
        Extract issues from the named dataset folder (latest when omitted).

        Args:
            source_folder: Dataset folder identifier, e.g. 'jan-5-2026'
            run_id: Run id to trace under (a fresh one is allocated when omitted)

        Returns:
            ExtractionResult with one or two issues, the experiment target first

        Raises:
            ConfigurationError: If the gateway credential is missing
            InputError: If no dataset is found or it has no complaints/transcripts
            ExtractionError: If the model output is empty or unparsable
        """
        started = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        self.gateway.ensure_available()

        handle = self.locator.resolve(source_folder)
        if handle is None or handle.dataset.is_empty:
            raise InputError("No complaint-intake.json found or it's empty.")

        dataset = handle.dataset
        run_id = run_id or create_run_id()
        trace_dir = ensure_trace_dir(self.locator.root_dir, handle.folder, run_id)
        model_input = build_extraction_input(handle)

        response = await self.gateway.invoke(
            ISSUE_EXTRACTION_INSTRUCTIONS, [model_input], output_schema=IssueExtraction
        )
        parsed = response.structured
        if not isinstance(parsed, IssueExtraction) or not parsed.issues:
            LOG.error("[%s] could not parse issues from model output (%d chars)",
                      STAGE_NAME, len(response.text))
            raise ExtractionError("Failed to parse issues.", raw=response.text)

        issues = select_issues(parsed.issues)
        summary_md = render_summary(handle.date, len(dataset.complaints),
                                    len(dataset.transcripts), issues)
        summary_path = handle.path / SUMMARY_FILENAME
        summary_path.write_text(summary_md, encoding="utf-8")

        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.info("[%s] ok duration_ms=%d issues=%d", STAGE_NAME, duration_ms, len(issues))

        trace_path = write_trace_file(trace_dir, TRACE_FILENAME, {
            "step": STAGE_NAME,
            "run_id": run_id,
            "started_at": started_at,
            "duration_ms": duration_ms,
            "model": self.gateway.model_name,
            "instructions": ISSUE_EXTRACTION_INSTRUCTIONS,
            "input": model_input,
            "output_text": response.text,
            "parsed": parsed,
            "issues": issues,
            "response": response.trace,
            "summary_path": str(summary_path),
            "source_folder": handle.folder,
            "date": handle.date,
            "counts": {
                "complaints": len(dataset.complaints),
                "transcripts": len(dataset.transcripts),
            },
        })

        return ExtractionResult(
            issues=issues,
            complaints_map=dataset.complaints_map(),
            summary_markdown=summary_md,
            date=handle.date,
            source_folder=handle.folder,
            run_id=run_id,
            trace_dir=str(trace_dir),
            trace_path=str(trace_path),
            summary_path=str(summary_path),
            duration_ms=duration_ms,
        )

    def extract(self, source_folder: Optional[str] = None,
                run_id: Optional[str] = None) -> ExtractionResult:
        """Synchronous wrapper for extract_async."""
        return asyncio.run(self.extract_async(source_folder, run_id))
