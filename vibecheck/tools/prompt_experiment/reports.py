"""Markdown documents written next to each dataset and run trace."""

import re
from typing import Any, Dict, List, Optional, Sequence

from .models import Issue, Variant, VariantJudgment

MISSING = "(missing)"


def experiment_token(issue_text: str) -> str:
    """Title-cased token from the first two words of an issue, e.g. 'RefundDelays'."""
    first_words = " ".join(issue_text.split()[:2])
    tokens = re.sub(r"[^A-Za-z0-9]+", " ", first_words).split()
    return "".join(t[0].upper() + t[1:] for t in tokens) or "Experiment"


def _issue_lines(issue: Issue) -> List[str]:
    return [
        f"- **{issue.issue}** (severity: {issue.severity})",
        f"- Evidence: {issue.evidence}",
        f"- Transcripts: {', '.join(issue.transcript_ids)}",
        "",
    ]


def render_summary(date: str, complaint_count: int, transcript_count: int,
                   issues: Sequence[Issue]) -> str:
    lines = [
        "# Complaint Summary",
        "",
        f"- Date: {date}",
        f"- Complaints: {complaint_count}",
        f"- Transcripts: {transcript_count}",
        "",
        "## Experiment Target",
        *_issue_lines(issues[0]),
    ]
    if len(issues) > 1:
        lines += ["## Also Flagged", *_issue_lines(issues[1])]
    return "\n".join(lines)


def render_experiment(token: str, source_folder: str, issue: Issue,
                      variants: Sequence[Variant]) -> str:
    lines = [
        f"# Experiment: {token}",
        "",
        f"- **Date:** {source_folder}",
        f"- **Issue:** {issue.issue}",
        f"- **Severity:** {issue.severity}",
        f"- **Evidence:** {issue.evidence}",
        "",
        "---",
        "",
    ]
    for variant in variants:
        lines += [
            f"## {variant.name}",
            f"**Technique:** {variant.technique}",
            "",
            f"**What changed:** {variant.description}",
            "",
            "**Modified Prompt:**",
            "```",
            variant.changed_prompt,
            "```",
            "",
            "**LLM-Judge Eval Criteria:**",
            "",
            "| Dimension | Question | Scoring (1-5) |",
            "|-----------|----------|---------------|",
            *(f"| {c.dimension} | {c.question} | {c.scoring} |" for c in variant.eval_criteria),
            "",
            "---",
            "",
        ]
    return "\n".join(lines)


def render_summarizer(*, run_id: str, source_folder: str, step1: Optional[Dict[str, Any]],
                      step1_path: str, step2: Optional[Dict[str, Any]], step2_path: str,
                      step3_path: str, variant_count: int, test_transcript_id: str,
                      judgments: Sequence[VariantJudgment], trace_dir: str) -> str:
    """Scoreboard document cross-referencing the traces of all three stages.

    step1/step2 are the trace payloads read back from disk; either may be None
    when that stage ran under a different run id.
    """
    step1 = step1 or {}
    step2 = step2 or {}
    # Selected issues, experiment target first
    issues = step1.get("issues") or []
    primary = issues[0] if issues else {}
    winner = judgments[0].variant_name if judgments else "None"

    lines = [
        "# Vibe Check Summarizer",
        "",
        f"- Run ID: {run_id}",
        f"- Date: {step1.get('date') or 'Unknown'}",
        f"- Data folder: {source_folder}",
        "",
        "## Step 1: Extract Issues",
        f"- Primary issue: {primary.get('issue') or MISSING}",
        f"- Severity: {primary.get('severity') or MISSING}",
        f"- Evidence: {primary.get('evidence') or MISSING}",
        f"- Summary file: {step1.get('summary_path') or MISSING}",
        f"- Trace: {step1_path}",
        "",
        "## Step 2: Generate Variants",
        f"- Variants generated: {variant_count}",
        f"- Experiment file: {step2.get('experiment_path') or MISSING}",
        f"- Trace: {step2_path}",
        "",
        "## Step 3: LLM Judge",
        f"- Test transcript: {test_transcript_id}",
        f"- Winner: {winner}",
        f"- Trace: {step3_path}",
        "",
        "## Full Trace Bundle",
        f"- {trace_dir}",
        "",
        "## Scoreboard",
        "| Variant | Total Score |",
        "|---------|-------------|",
        *(f"| {j.variant_name} | {j.total_score:.1f} |" for j in judgments),
        "",
    ]
    return "\n".join(lines)
