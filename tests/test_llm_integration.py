"""Integration tests for the model gateway that hit the actual API."""

import pytest

from vibecheck.libs.config_loader import load_default_configs
from vibecheck.libs.llm import PydanticAIGateway
from vibecheck.tools.prompt_experiment.models import Issue, IssueExtraction, JudgeScores
from vibecheck.tools.prompt_experiment.prompts import AGENT_PROMPT, JUDGE_INSTRUCTIONS


# Mark all tests in this file as integration tests
pytestmark = [pytest.mark.integration_test, pytest.mark.slow_integration_test]


def _gateway():
    return PydanticAIGateway(load_default_configs(), model="gpt-4o-mini")


class TestGatewayIntegration:
    """Integration tests for PydanticAIGateway against the OpenAI API."""

    @pytest.mark.asyncio
    async def test_plain_text_replay(self):
        response = await _gateway().invoke(AGENT_PROMPT, ["Where is my refund?", "It has been two weeks."])
        assert response.text
        assert response.structured is None

    @pytest.mark.asyncio
    async def test_structured_issue_extraction(self):
        response = await _gateway().invoke(
            "List the issues in these complaints.",
            ["1. The agent never told me when my refund would arrive.\n2. It kept apologizing."],
            output_schema=IssueExtraction,
        )
        assert isinstance(response.structured, IssueExtraction)
        assert response.structured.issues
        assert all(isinstance(i, Issue) for i in response.structured.issues)

    @pytest.mark.asyncio
    async def test_structured_judge_scores(self):
        response = await _gateway().invoke(
            JUDGE_INSTRUCTIONS,
            ["Variant response to evaluate:\nSorry! Your refund will arrive in 3-5 business days.\n\n"
             "Eval Criteria:\n1. empathy\n2. solution-orientation\n3. conciseness"],
            output_schema=JudgeScores,
        )
        assert isinstance(response.structured, JudgeScores)
        assert all(1 <= s.score <= 5 for s in response.structured.scores)
