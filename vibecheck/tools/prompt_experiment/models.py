"""Pydantic models for the prompt-experiment pipeline."""

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Severity = Literal["high", "medium", "low"]


class Message(BaseModel):
    """One turn of a support conversation."""
    role: str = Field(description="Speaker role, e.g. 'user' or 'agent'")
    content: str = Field(default="", description="Message text")


class Transcript(BaseModel):
    """A recorded conversation linked to a customer complaint."""
    id: str = Field(description="Identifier unique within the dataset")
    complaint: str = Field(default="", description="Complaint text filed about this conversation")
    messages: List[Message] = Field(default_factory=list)

    def user_messages(self) -> List[str]:
        return [m.content for m in self.messages if m.role == "user"]

    def render(self, indent: str = "") -> str:
        return "\n".join(f"{indent}{m.role}: {m.content}" for m in self.messages)


class Dataset(BaseModel):
    """Complaints and transcripts loaded from one dated folder."""
    complaints: List[str] = Field(default_factory=list)
    transcripts: List[Transcript] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return not self.complaints or not self.transcripts

    def find_transcript(self, transcript_id: str) -> Optional[Transcript]:
        return next((t for t in self.transcripts if t.id == transcript_id), None)

    def complaints_map(self) -> Dict[str, str]:
        """Map transcript id to complaint text, skipping blank pairs."""
        return {t.id: t.complaint for t in self.transcripts if t.id and t.complaint}


class DatasetHandle(BaseModel):
    """A dataset resolved by a locator, with the folder it came from."""
    folder: str = Field(description="Folder identifier, e.g. 'jan-5-2026'")
    date: str = Field(description="Display label for the folder date, e.g. 'Jan 5, 2026'")
    path: Path = Field(description="Directory that receives markdown and trace artifacts")
    dataset: Dataset


class Issue(BaseModel):
    """A behavioral issue grouped from complaints."""
    issue: str = Field(description="Short description of the issue")
    severity: Severity = Field(description="Triage severity")
    evidence: str = Field(default="", description="Concrete evidence from complaints or transcripts")
    transcript_ids: List[str] = Field(default_factory=list, description="Ids of transcripts that exhibit the issue")


class IssueExtraction(BaseModel):
    """Schema requested from the model by the issue extractor."""
    issues: List[Issue]


class EvalCriterion(BaseModel):
    """One rubric dimension scored on a 1-5 scale."""
    dimension: str = Field(description="Short label, e.g. 'empathy'")
    question: str = Field(description="What the judge should evaluate, phrased as a question")
    scoring: str = Field(description="Rubric for the 1-5 scale")


class PromptRewrite(BaseModel):
    """A rewritten agent prompt as submitted for judging; criteria are informational."""
    name: str
    technique: str = ""
    description: str = ""
    changed_prompt: str
    eval_criteria: List[EvalCriterion] = Field(default_factory=list)


class Variant(PromptRewrite):
    """A candidate rewrite of the production agent prompt."""
    technique: str
    description: str
    eval_criteria: List[EvalCriterion] = Field(
        min_length=3, max_length=3,
        description="Exactly three display-only criteria for this variant",
    )


class VariantGeneration(BaseModel):
    """Schema requested from the model by the variant generator."""
    variants: List[Variant]


class Candidate(BaseModel):
    """A prompt under evaluation, paired with the rubric it is judged on."""
    name: str
    technique: str
    description: str
    prompt: str
    rubric: List[EvalCriterion]


class DimensionScore(BaseModel):
    """Judge score for a single rubric dimension."""
    dimension: str
    score: int = Field(description="Integer score from 1 to 5")
    reasoning: str = Field(description="One or two sentences on why the score is not higher")

    @field_validator("score")
    @classmethod
    def clamp_score(cls, value: int) -> int:
        return min(5, max(1, value))


class JudgeScores(BaseModel):
    """Schema requested from the model by the judge."""
    scores: List[DimensionScore]


class VariantJudgment(BaseModel):
    """Client-facing judgment of one candidate."""
    variant_name: str
    response_text: str
    scores: List[DimensionScore] = Field(default_factory=list)
    total_score: float = 0.0
    timed_out: bool = False


class CandidateJudgment(VariantJudgment):
    """Judgment plus the raw replay/judge exchanges kept for the trace file."""
    replay_trace: Any = None
    judge_trace: Any = None

    def to_judgment(self) -> VariantJudgment:
        return VariantJudgment(**self.model_dump(include=set(VariantJudgment.model_fields)))


class Investigation(BaseModel):
    """Schema requested from the model by the complaint investigator."""
    analysis: str = Field(description="What pattern the AI exhibited and how it manifested in the transcript")
    hypothesis: str = Field(description="Why the current prompt produced that behavior")
    prompt_section: str = Field(description="The most relevant prompt excerpt, or a note that none applies")


class StageResult(BaseModel):
    """Fields every stage response carries."""
    run_id: str
    duration_ms: int = 0

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ExtractionResult(StageResult):
    issues: List[Issue]
    complaints_map: Dict[str, str]
    summary_markdown: str
    date: str
    source_folder: str
    trace_dir: str
    trace_path: str
    summary_path: str


class GenerationResult(StageResult):
    variants: List[Variant]
    issue: Issue
    trace_dir: Optional[str] = None
    trace_path: Optional[str] = None
    experiment_path: Optional[str] = None


class JudgeResult(StageResult):
    judgments: List[VariantJudgment]
    test_transcript_id: str
    winner: Optional[str]
    trace_dir: str
    trace_path: str
    summarizer_path: str


class InvestigationResult(BaseModel):
    analysis: str
    hypothesis: str
    prompt_section: str
    date: Optional[str] = None
    source_folder: Optional[str] = None
    transcript_id: Optional[str] = None
    trace: Any = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class GenerateResult(BaseModel):
    """Plain completion for a single prompt."""
    text: str
    trace: Any = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Run(BaseModel):
    """Durable record of one end-to-end pipeline execution."""
    run_id: str
    source_folder: str
    trace_dir: str
    started_at: str
    stage_payloads: Dict[str, str] = Field(
        default_factory=dict,
        description="Stage name -> trace file written by that stage",
    )
    winner: Optional[str] = None

    def record_stage(self, stage: str, trace_path: Optional[str]) -> None:
        if trace_path:
            self.stage_payloads[stage] = trace_path
