"""Tests for the variant generation stage."""

import json

import pytest

from vibecheck.libs.errors import ConfigurationError, GenerationError, InputError
from vibecheck.tools.prompt_experiment.models import Issue, VariantGeneration
from vibecheck.tools.prompt_experiment.prompts import AGENT_PROMPT
from vibecheck.tools.prompt_experiment.reports import experiment_token
from vibecheck.tools.prompt_experiment.variant_generator import VariantGenerator, load_prompting_guide

from conftest import DEFAULT_VARIANTS, make_variant

FOLDER = "jan-5-2026"


@pytest.fixture
def issue():
    return Issue(issue="Refund delays ignored", severity="high",
                 evidence="No timeline given", transcript_ids=["T1"])


@pytest.mark.parametrize("text,token", [
    ("Refund delays ignored", "RefundDelays"),
    ("over-apologizing agent today", "OverApologizingAgent"),
    ("", "Experiment"),
])
def test_experiment_token(text, token):
    assert experiment_token(text) == token


def test_build_input_includes_prompt_and_issue(configs, gateway, locator, issue):
    generator = VariantGenerator(configs, gateway=gateway, locator=locator)
    text = generator.build_input(issue)
    assert text.startswith(f"Current Agent Prompt:\n{AGENT_PROMPT}")
    assert "HIGH Severity Issue: Refund delays ignored" in text
    assert "Evidence: No timeline given" in text


def test_prompting_guide(tmp_path):
    guide = tmp_path / "guide.md"
    guide.write_text("  Prefer few-shot examples.\n")
    assert load_prompting_guide(str(guide)) == "Prefer few-shot examples."
    assert load_prompting_guide(str(tmp_path / "missing.md")) == ""
    assert load_prompting_guide(None) == ""


@pytest.mark.asyncio
async def test_generate_without_folder_writes_nothing(configs, gateway, locator, issue, tmp_path):
    result = await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(issue)

    assert [v.name for v in result.variants] == ["Variant A", "Variant B", "Variant C"]
    assert result.issue == issue
    assert result.trace_path is None
    assert result.experiment_path is None
    assert not list(tmp_path.glob("**/Experiment_*.md"))
    assert not list(tmp_path.glob("**/step2-generate-variants.json"))


@pytest.mark.asyncio
async def test_generate_with_folder_writes_experiment_and_trace(configs, gateway, locator, issue, tmp_path):
    result = await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(
        issue, source_folder=FOLDER, run_id="run-1")

    experiment = tmp_path / FOLDER / "Experiment_RefundDelays.md"
    assert result.experiment_path == str(experiment)
    text = experiment.read_text(encoding="utf-8")
    assert text.startswith("# Experiment: RefundDelays")
    assert "## Variant B" in text
    assert "| humor | Is it humor? | 1=no, 5=yes |" in text

    trace_path = tmp_path / FOLDER / "trace" / "run-1" / "step2-generate-variants.json"
    assert result.trace_path == str(trace_path)
    trace = json.loads(trace_path.read_text(encoding="utf-8"))
    assert trace["step"] == "generate-variants"
    assert trace["experiment_path"] == str(experiment)
    assert len(trace["parsed"]["variants"]) == 3


@pytest.mark.asyncio
async def test_generate_truncates_to_three(configs, gateway_factory, locator, issue):
    variants = DEFAULT_VARIANTS + [make_variant("D", "Extra"), make_variant("E", "Extra")]
    gateway = gateway_factory(variants=variants)
    result = await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(issue)
    assert [v.name for v in result.variants] == ["Variant A", "Variant B", "Variant C"]


@pytest.mark.asyncio
async def test_fewer_variants_are_kept(configs, gateway_factory, locator, issue):
    gateway = gateway_factory(variants=DEFAULT_VARIANTS[:1])
    result = await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(issue)
    assert len(result.variants) == 1


@pytest.mark.asyncio
async def test_missing_issue_is_input_error(configs, gateway, locator):
    with pytest.raises(InputError, match="Provide issue object from extract-issues step."):
        await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(None)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_missing_credential_checked_first(configs, gateway_factory, locator):
    gateway = gateway_factory(available=False)
    with pytest.raises(ConfigurationError):
        await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(None)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_unparsable_output_keeps_raw(configs, gateway_factory, locator, issue):
    gateway = gateway_factory(raw_overrides={VariantGeneration: '{"variants": "nope"}'})
    with pytest.raises(GenerationError, match="Failed to parse variants.") as exc:
        await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(issue)
    assert exc.value.raw == '{"variants": "nope"}'


@pytest.mark.asyncio
async def test_variant_with_two_criteria_is_rejected(configs, gateway_factory, locator, issue):
    gateway = gateway_factory(variants=[make_variant("A", "Targeted Fix", dims=("humor", "brevity"))])
    with pytest.raises(GenerationError):
        await VariantGenerator(configs, gateway=gateway, locator=locator).generate_async(issue)


@pytest.mark.asyncio
async def test_agent_prompt_override(configs, gateway, locator, issue):
    generator = VariantGenerator(configs, gateway=gateway, locator=locator, agent_prompt="Be terse.")
    await generator.generate_async(issue)
    assert gateway.calls[0].messages[0].startswith("Current Agent Prompt:\nBe terse.")
