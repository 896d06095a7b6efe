"""Instruction texts, the production agent prompt and the shared judging rubric."""

from typing import List, Sequence

from .models import EvalCriterion

AGENT_PROMPT = (
    "You are a supportive, empathetic customer support agent. Respond in a warm, human tone. "
    "Acknowledge emotions, ask a brief clarifying question if needed, and provide the next best step. "
    "Keep responses concise and practical."
)

BASELINE_NAME = "Original (Baseline)"

ISSUE_EXTRACTION_INSTRUCTIONS = (
    "You are an issue extractor for an AI quality platform. "
    "Given customer complaints and conversation transcripts about an AI agent, "
    "identify exactly 2 issues:\n"
    "1. The SINGLE most important issue (severity=high). Group similar complaints into it. "
    "List ALL transcript IDs that exhibit it.\n"
    "2. One secondary issue (severity=medium or low) that is a distinct, lesser problem.\n"
    "We only run experiments on the high-severity issue. "
    "The secondary issue is flagged for awareness. "
    "Be concrete and brief."
)

VARIANT_TECHNIQUES = [
    ("Targeted Fix", "Minimal, surgical edits to the existing prompt to directly address the issue."),
    ("Technique Injection", "Add a specific prompting technique (step-by-step reasoning, role anchoring, "
                            "verbosity control, etc.)."),
    ("Self-Reflection Rubric", "Add a self-check rubric so the AI evaluates its own output before responding."),
]

JUDGE_INSTRUCTIONS = (
    "You are a strict, impartial LLM judge for an AI quality platform. "
    "Score the variant response on each dimension using the provided rubric. "
    "IMPORTANT SCORING GUIDELINES:\n"
    "- Scores of 5 should be RARE: only for truly exceptional responses.\n"
    "- Most competent responses should land at 3-4.\n"
    "- A score of 3 means 'adequate, does the job'. A score of 4 means 'good, above average'.\n"
    "- Be critical. Look for specific weaknesses: generic language, missing details, "
    "unnecessary verbosity, lack of concrete next steps.\n"
    "- Compare the response against what a skilled human agent would say.\n"
    "Provide brief reasoning (1-2 sentences) for each score that justifies why it is NOT higher."
)

INVESTIGATION_INSTRUCTIONS = (
    "You are an expert investigator analyzing subjective quality complaints about AI responses. "
    "Given a complaint, the conversation transcript, and the system prompt that produced the responses, "
    "identify what went wrong, why the prompt caused it, and the most relevant prompt section. "
    "Be specific and concise. If no prompt section is clearly responsible, say so."
)

# Every candidate is judged on these, whatever criteria a variant declares.
SHARED_RUBRIC = [
    EvalCriterion(
        dimension="empathy",
        question="How well does the response demonstrate genuine understanding of the customer's "
                 "specific feelings and situation?",
        scoring="1=ignores emotions entirely, 2=generic 'sorry', 3=acknowledges feelings but generically, "
                "4=specific empathy tied to their situation, 5=deeply personalized emotional validation",
    ),
    EvalCriterion(
        dimension="solution-orientation",
        question="Does the response move the conversation forward with a clear, actionable next step?",
        scoring="1=no next step, 2=vague suggestion, 3=a next step but unclear, 4=clear actionable step, "
                "5=specific step with timeline/expectation",
    ),
    EvalCriterion(
        dimension="conciseness",
        question="Is the response appropriately concise without losing warmth or essential information?",
        scoring="1=wall of text or empty, 2=very verbose, 3=adequate length, 4=well-balanced, "
                "5=perfectly concise with nothing wasted",
    ),
]


def build_variant_instructions(guide: str = "") -> str:
    """Instructions for the variant generator, optionally with a prompting guide appended."""
    lines: List[str] = [
        "You are a prompt engineer for an AI quality platform.",
        "Given the current agent system prompt and a HIGH severity issue from customer complaints,",
        "generate exactly 3 prompt variants (A, B, C) that fix the issue.",
        "",
        "Each variant uses a DIFFERENT technique:",
    ]
    for letter, (technique, summary) in zip("ABC", VARIANT_TECHNIQUES):
        lines.append(f"- Variant {letter} ({technique}): {summary}")
    lines += [
        "",
        "For each variant, generate 3 eval_criteria for LLM-as-judge scoring.",
        "Each eval criterion is an object with:",
        "  - dimension: short label (e.g. 'empathy', 'actionability', 'conciseness')",
        "  - question: what the judge should evaluate (phrased as a question)",
        "  - scoring: rubric for 1-5 scale (e.g. '1=ignores emotion entirely, 3=generic acknowledgment, "
        "5=specific empathetic response tied to user situation')",
        "",
        "These evals will be fed directly to an LLM judge that scores each variant's output.",
        "",
    ]
    if guide:
        lines.append(f"Reference prompting guide:\n{guide}\n")
    lines.append("Keep prompt changes focused. Don't rewrite the entire prompt unless necessary.")
    return "\n".join(lines)


def format_rubric(criteria: Sequence[EvalCriterion]) -> str:
    return "\n\n".join(
        f"{i}. Dimension: {c.dimension}\n   Question: {c.question}\n   Scoring: {c.scoring}"
        for i, c in enumerate(criteria, start=1)
    )
