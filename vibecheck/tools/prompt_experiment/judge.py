"""Stage 3: replay a test conversation through each candidate prompt and judge it."""

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from tqdm.asyncio import tqdm

from vibecheck.libs.config_loader import ConfigType, get_config
from vibecheck.libs.errors import InputError, JudgeParseError
from vibecheck.libs.llm import GatewayResponse, ModelGateway, PydanticAIGateway
from vibecheck.libs.trace import create_run_id, ensure_trace_dir, read_json_file, write_trace_file
from .dataset import DatasetLocator, locator_from_config
from .issue_extractor import TRACE_FILENAME as EXTRACT_TRACE_FILENAME
from .models import (
    Candidate,
    CandidateJudgment,
    Dataset,
    DimensionScore,
    EvalCriterion,
    Issue,
    JudgeResult,
    JudgeScores,
    PromptRewrite,
    Transcript,
)
from .prompts import AGENT_PROMPT, BASELINE_NAME, JUDGE_INSTRUCTIONS, SHARED_RUBRIC, format_rubric
from .reports import render_summarizer
from .variant_generator import TRACE_FILENAME as GENERATE_TRACE_FILENAME

LOG = logging.getLogger(__name__)

STAGE_NAME = "judge"
TRACE_FILENAME = "step3-judge.json"
SUMMARIZER_FILENAME = "Summarizer.md"
NO_USER_MESSAGES = "(no user messages)"
TIMED_OUT = "(timed out)"
DEFAULT_CANDIDATE_TIMEOUT = 120.0


def total_score(scores: Sequence[DimensionScore]) -> float:
    """Mean of the dimension scores rounded half-up to one decimal; 0 when empty."""
    if not scores:
        return 0.0
    mean = sum(s.score for s in scores) / len(scores)
    return math.floor(mean * 10 + 0.5) / 10


def rank_judgments(judgments: Sequence[CandidateJudgment]) -> List[CandidateJudgment]:
    """Sort by total score, highest first; ties keep candidate order."""
    return sorted(judgments, key=lambda j: j.total_score, reverse=True)


def select_test_transcript(dataset: Dataset, issue: Issue) -> Optional[Transcript]:
    """The issue's first referenced transcript, else the dataset's first one."""
    if issue.transcript_ids:
        match = dataset.find_transcript(issue.transcript_ids[0])
        if match is not None:
            return match
        LOG.warning("Transcript %s not in dataset, falling back to the first transcript",
                    issue.transcript_ids[0])
    return dataset.transcripts[0] if dataset.transcripts else None


def build_candidates(variants: Sequence[PromptRewrite], baseline_prompt: str,
                     rubric: Sequence[EvalCriterion] = SHARED_RUBRIC) -> List[Candidate]:
    """Baseline first, then each variant, all on the same rubric.

    Variant eval_criteria are display-only and deliberately dropped here.
    """
    candidates = [Candidate(
        name=BASELINE_NAME,
        technique="baseline",
        description="Current production prompt",
        prompt=baseline_prompt,
        rubric=list(rubric),
    )]
    candidates += [
        Candidate(name=v.name, technique=v.technique, description=v.description,
                  prompt=v.changed_prompt, rubric=list(rubric))
        for v in variants
    ]
    return candidates


def parse_scores(response: GatewayResponse) -> List[DimensionScore]:
    if not isinstance(response.structured, JudgeScores):
        raise JudgeParseError("Judge output did not match the scores schema.", raw=response.text)
    return list(response.structured.scores)


class ReplayJudge:
    """Replay-and-judge engine comparing candidates against the baseline prompt."""

    def __init__(self, configs: ConfigType,
                 gateway: Optional[ModelGateway] = None,
                 locator: Optional[DatasetLocator] = None,
                 agent_prompt: Optional[str] = None):
        self.configs = configs
        self.gateway = gateway or PydanticAIGateway(configs)
        self.locator = locator or locator_from_config(configs)
        self.agent_prompt = agent_prompt or get_config(
            "prompt_experiment.agent_prompt", configs, default=None) or AGENT_PROMPT
        self.candidate_timeout: Optional[float] = get_config(
            "judge.candidate_timeout_seconds", configs, default=DEFAULT_CANDIDATE_TIMEOUT)
        self.show_progress = bool(get_config("judge.show_progress", configs, default=True))

    async def replay(self, candidate: Candidate, transcript: Transcript) -> Tuple[str, Any]:
        """Re-run the user's side of the conversation under the candidate prompt."""
        user_messages = transcript.user_messages()
        if not user_messages:
            return NO_USER_MESSAGES, {"skipped": True}
        response = await self.gateway.invoke(candidate.prompt, user_messages)
        return response.text, response.trace

    async def judge_response(self, transcript: Transcript, response_text: str,
                             rubric: Sequence[EvalCriterion], issue_name: str
                             ) -> Tuple[List[DimensionScore], Any]:
        """Score one replayed response; unparsable judge output yields no scores."""
        judge_input = "\n".join([
            f"Issue being tested: {issue_name}",
            f"User complaint: {transcript.complaint}",
            "",
            f"Original conversation:\n{transcript.render()}",
            "",
            f"Variant response to evaluate:\n{response_text}",
            "",
            f"Eval Criteria:\n{format_rubric(rubric)}",
        ])
        response = await self.gateway.invoke(JUDGE_INSTRUCTIONS, [judge_input], output_schema=JudgeScores)
        try:
            scores = parse_scores(response)
        except JudgeParseError as e:
            LOG.warning("%s Scoring as zero. Raw output: %.200s", e.message, e.raw or "")
            scores = []
        return scores, response.trace

    async def evaluate_candidate(self, candidate: Candidate, transcript: Transcript,
                                 issue: Issue) -> CandidateJudgment:
        response_text, replay_trace = await self.replay(candidate, transcript)
        scores, judge_trace = await self.judge_response(
            transcript, response_text, candidate.rubric, issue.issue
        )
        return CandidateJudgment(
            variant_name=candidate.name,
            response_text=response_text,
            scores=scores,
            total_score=total_score(scores),
            replay_trace=replay_trace,
            judge_trace=judge_trace,
        )

    async def _evaluate_with_timeout(self, candidate: Candidate, transcript: Transcript,
                                     issue: Issue) -> CandidateJudgment:
        if not self.candidate_timeout:
            return await self.evaluate_candidate(candidate, transcript, issue)
        try:
            return await asyncio.wait_for(
                self.evaluate_candidate(candidate, transcript, issue),
                timeout=self.candidate_timeout,
            )
        except asyncio.TimeoutError:
            LOG.warning("Candidate %s timed out after %ss; scoring as zero",
                        candidate.name, self.candidate_timeout)
            return CandidateJudgment(
                variant_name=candidate.name,
                response_text=TIMED_OUT,
                timed_out=True,
                replay_trace={"timed_out": True},
                judge_trace={"timed_out": True},
            )

    async def evaluate_all(self, candidates: Sequence[Candidate], transcript: Transcript,
                           issue: Issue) -> List[CandidateJudgment]:
        """
        Evaluate every candidate concurrently and return results in candidate order.

        An exception in any candidate (other than a timeout) cancels the rest
        and propagates.
        """
        tasks = [
            asyncio.create_task(self._evaluate_with_timeout(candidate, transcript, issue))
            for candidate in candidates
        ]
        try:
            return await tqdm.gather(*tasks, desc="Judging candidates", disable=not self.show_progress)
        except Exception:
            for task in tasks:
                if not task.done():
                    task.cancel()
            raise

    async def judge_async(self, variants: Optional[Sequence[PromptRewrite]], issue: Optional[Issue],
                          run_id: Optional[str] = None,
                          source_folder: Optional[str] = None) -> JudgeResult:
        """
        Judge the baseline plus each variant on one test transcript.

        Args:
            variants: Variants from the generation stage
            issue: The experiment-target issue
            run_id: Run id to trace under (a fresh one is allocated when omitted)
            source_folder: Dataset folder (latest when omitted)

        Returns:
            JudgeResult with judgments sorted by total score, highest first

        Raises:
            ConfigurationError: If the gateway credential is missing
            InputError: If inputs, the dataset folder, or a test transcript are missing
        """
        started = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        self.gateway.ensure_available()

        if not variants or issue is None:
            raise InputError("Provide variants array and issue from generate-variants step.")
        run_id = run_id or create_run_id()

        handle = self.locator.resolve(source_folder)
        if handle is None:
            raise InputError("No data folder found.")
        transcript = select_test_transcript(handle.dataset, issue)
        if transcript is None:
            raise InputError("No test transcript found.")

        candidates = build_candidates(variants, self.agent_prompt)
        LOG.info("Judging %d candidates on transcript %s", len(candidates), transcript.id)
        ranked = rank_judgments(await self.evaluate_all(candidates, transcript, issue))
        winner = ranked[0].variant_name if ranked else None

        duration_ms = int((time.monotonic() - started) * 1000)
        trace_dir = ensure_trace_dir(self.locator.root_dir, handle.folder, run_id)
        trace_path = write_trace_file(trace_dir, TRACE_FILENAME, {
            "step": STAGE_NAME,
            "run_id": run_id,
            "started_at": started_at,
            "duration_ms": duration_ms,
            "model": self.gateway.model_name,
            "issue": issue.issue,
            "test_transcript_id": transcript.id,
            "rubric": SHARED_RUBRIC,
            "candidates": ranked,
        })

        judgments = [j.to_judgment() for j in ranked]
        summarizer_path = self._write_summarizer(trace_dir, run_id, handle.folder, len(variants),
                                                 transcript.id, judgments, trace_path)
        LOG.info("[%s] ok duration_ms=%d variants_judged=%d winner=%s",
                 STAGE_NAME, duration_ms, len(ranked), winner)

        return JudgeResult(
            judgments=judgments,
            test_transcript_id=transcript.id,
            winner=winner,
            run_id=run_id,
            trace_dir=str(trace_dir),
            trace_path=str(trace_path),
            summarizer_path=str(summarizer_path),
            duration_ms=duration_ms,
        )

    def _write_summarizer(self, trace_dir: Path, run_id: str, folder: str, variant_count: int,
                          transcript_id: str, judgments, trace_path: Path) -> Path:
        step1_path = trace_dir / EXTRACT_TRACE_FILENAME
        step2_path = trace_dir / GENERATE_TRACE_FILENAME
        summary = render_summarizer(
            run_id=run_id,
            source_folder=folder,
            step1=read_json_file(step1_path),
            step1_path=str(step1_path),
            step2=read_json_file(step2_path),
            step2_path=str(step2_path),
            step3_path=str(trace_path),
            variant_count=variant_count,
            test_transcript_id=transcript_id,
            judgments=judgments,
            trace_dir=str(trace_dir),
        )
        summarizer_path = trace_dir / SUMMARIZER_FILENAME
        summarizer_path.write_text(summary, encoding="utf-8")
        return summarizer_path

    def judge(self, variants: Optional[Sequence[PromptRewrite]], issue: Optional[Issue],
              run_id: Optional[str] = None, source_folder: Optional[str] = None) -> JudgeResult:
        """Synchronous wrapper for judge_async."""
        return asyncio.run(self.judge_async(variants, issue, run_id, source_folder))
