"""Shared fixtures: a scripted model gateway and in-memory datasets."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Type

import pytest
from pydantic import BaseModel

from vibecheck.libs.errors import ConfigurationError
from vibecheck.libs.llm import GatewayResponse, ModelGateway, parse_json_output
from vibecheck.tools.prompt_experiment.dataset import InMemoryDatasetLocator
from vibecheck.tools.prompt_experiment.models import (
    Dataset,
    Investigation,
    IssueExtraction,
    JudgeScores,
    VariantGeneration,
)

FOLDER = "jan-5-2026"

DEFAULT_ISSUES = [
    {
        "issue": "Generic apologies without specifics",
        "severity": "medium",
        "evidence": "Agent repeats 'sorry for the inconvenience'",
        "transcript_ids": ["T2"],
    },
    {
        "issue": "Refund delays ignored",
        "severity": "high",
        "evidence": "Customer asked about a refund and got no timeline",
        "transcript_ids": ["T1"],
    },
]


def make_variant(letter: str, technique: str, dims=("humor", "brevity", "formality")) -> Dict[str, Any]:
    return {
        "name": f"Variant {letter}",
        "technique": technique,
        "description": f"Change {letter}",
        "changed_prompt": f"Prompt {letter}",
        "eval_criteria": [
            {"dimension": d, "question": f"Is it {d}?", "scoring": "1=no, 5=yes"} for d in dims
        ],
    }


DEFAULT_VARIANTS = [
    make_variant("A", "Targeted Fix"),
    make_variant("B", "Technique Injection"),
    make_variant("C", "Self-Reflection Rubric"),
]


@dataclass
class GatewayCall:
    instructions: str
    messages: List[str]
    output_schema: Optional[Type[BaseModel]]


class ScriptedGateway(ModelGateway):
    """Deterministic gateway keyed on the requested output schema.

    Replays answer with 'REPLY[<instructions>]'; the judge scores a response by
    looking up which candidate prompt produced it in scores_by_prompt.
    """

    model_name = "scripted"

    def __init__(self, available: bool = True,
                 issues: Optional[List[Dict[str, Any]]] = None,
                 variants: Optional[List[Dict[str, Any]]] = None,
                 scores_by_prompt: Optional[Dict[str, List[int]]] = None,
                 default_scores: Sequence[int] = (3, 3, 3),
                 raw_overrides: Optional[Dict[type, str]] = None):
        self.available = available
        self.issues = DEFAULT_ISSUES if issues is None else issues
        self.variants = DEFAULT_VARIANTS if variants is None else variants
        self.scores_by_prompt = scores_by_prompt or {}
        self.default_scores = list(default_scores)
        self.raw_overrides = raw_overrides or {}
        self.calls: List[GatewayCall] = []

    def ensure_available(self) -> None:
        if not self.available:
            raise ConfigurationError("Missing OPENAI_API_KEY.")

    def calls_for(self, schema: Optional[type]) -> List[GatewayCall]:
        return [c for c in self.calls if c.output_schema is schema]

    def _judge_text(self, judge_input: str) -> str:
        response = judge_input.split("Variant response to evaluate:\n", 1)[1].split("\n\nEval Criteria:", 1)[0]
        scores = self.default_scores
        for prompt, prompt_scores in self.scores_by_prompt.items():
            if response == f"REPLY[{prompt}]":
                scores = prompt_scores
        dims = ["empathy", "solution-orientation", "conciseness"]
        return json.dumps({"scores": [
            {"dimension": d, "score": s, "reasoning": "ok"} for d, s in zip(dims, scores)
        ]})

    def respond(self, instructions: str, messages: List[str], output_schema) -> str:
        if output_schema in self.raw_overrides:
            return self.raw_overrides[output_schema]
        if output_schema is IssueExtraction:
            return json.dumps({"issues": self.issues})
        if output_schema is VariantGeneration:
            return json.dumps({"variants": self.variants})
        if output_schema is JudgeScores:
            return self._judge_text(messages[0])
        if output_schema is Investigation:
            return json.dumps({"analysis": "Agent skipped the refund timeline",
                               "hypothesis": "Prompt favors empathy over next steps",
                               "prompt_section": "Keep responses concise and practical."})
        return f"REPLY[{instructions}]"

    async def invoke(self, instructions, messages, output_schema=None) -> GatewayResponse:
        self.calls.append(GatewayCall(instructions, list(messages), output_schema))
        text = self.respond(instructions, list(messages), output_schema)
        structured = parse_json_output(text, output_schema) if output_schema else None
        return GatewayResponse(text=text, structured=structured, trace={"stub": True})


@pytest.fixture
def gateway_factory():
    """The ScriptedGateway class, for tests that need custom scripts."""
    return ScriptedGateway


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def configs():
    return {
        "openai": {"api_key": "test-key", "model": "gpt-4o-mini"},
        "judge": {"show_progress": False, "candidate_timeout_seconds": 5},
    }


@pytest.fixture
def refund_dataset():
    return Dataset.model_validate({
        "complaints": ["Refund delay"],
        "transcripts": [
            {
                "id": "T1",
                "complaint": "Refund delay",
                "messages": [
                    {"role": "user", "content": "Where is my refund?"},
                    {"role": "agent", "content": "Sorry for the inconvenience!"},
                ],
            },
        ],
    })


@pytest.fixture
def two_transcript_dataset():
    return Dataset.model_validate({
        "complaints": ["Refund delay", "Too many apologies"],
        "transcripts": [
            {
                "id": "T2",
                "complaint": "Too many apologies",
                "messages": [
                    {"role": "user", "content": "My order is late."},
                    {"role": "agent", "content": "So sorry! Very sorry!"},
                ],
            },
            {
                "id": "T1",
                "complaint": "Refund delay",
                "messages": [
                    {"role": "user", "content": "Where is my refund?"},
                    {"role": "agent", "content": "Sorry for the inconvenience!"},
                    {"role": "user", "content": "That doesn't help."},
                ],
            },
        ],
    })


@pytest.fixture
def folder():
    return FOLDER


@pytest.fixture
def locator(tmp_path, refund_dataset):
    return InMemoryDatasetLocator(tmp_path, {FOLDER: refund_dataset})
