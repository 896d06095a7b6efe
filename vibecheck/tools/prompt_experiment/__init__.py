"""Prompt experiments: extract a complaint issue, rewrite the agent prompt, judge the rewrites."""

from .issue_extractor import IssueExtractor
from .variant_generator import VariantGenerator
from .judge import ReplayJudge
from .investigator import ComplaintInvestigator
from .pipeline import PromptExperimentPipeline, PipelineRun
from .dataset import DatasetLocator, FolderDatasetLocator, InMemoryDatasetLocator
from .models import Dataset, Issue, Variant, VariantJudgment

__all__ = [
    'IssueExtractor',
    'VariantGenerator',
    'ReplayJudge',
    'ComplaintInvestigator',
    'PromptExperimentPipeline',
    'PipelineRun',
    'DatasetLocator',
    'FolderDatasetLocator',
    'InMemoryDatasetLocator',
    'Dataset',
    'Issue',
    'Variant',
    'VariantJudgment',
]
