"""Locating complaint datasets in date-named folders."""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from vibecheck.libs.config_loader import ConfigType, get_config
from .models import Dataset, DatasetHandle

LOG = logging.getLogger(__name__)

INTAKE_FILENAME = "complaint-intake.json"

DATA_FOLDER_PATTERN = re.compile(r"^([a-z]{3})-(\d{1,2})-(\d{4})$")
MONTH_KEYS = ["jan", "feb", "mar", "apr", "may", "jun",
              "jul", "aug", "sep", "oct", "nov", "dec"]


@dataclass(frozen=True)
class FolderDate:
    year: int
    month: int
    day: int

    @property
    def display(self) -> str:
        return f"{MONTH_KEYS[self.month - 1].capitalize()} {self.day}, {self.year}"

    @property
    def sort_key(self) -> int:
        return self.year * 10000 + self.month * 100 + self.day


def parse_folder_date(folder_name: str) -> Optional[FolderDate]:
    """Parse names like 'jan-5-2026' (case-insensitive); None if not a dataset folder."""
    match = DATA_FOLDER_PATTERN.match(folder_name.lower())
    if not match:
        return None
    month_key, day, year = match.group(1), int(match.group(2)), int(match.group(3))
    if month_key not in MONTH_KEYS or not 1 <= day <= 31:
        return None
    return FolderDate(year=year, month=MONTH_KEYS.index(month_key) + 1, day=day)


class DatasetLocator:
    """Resolves dataset folders to loaded datasets.

    Every stage receives a locator instead of scanning the working directory,
    so tests can serve in-memory fixtures.
    """

    def __init__(self, root_dir: Union[str, Path]):
        self.root_dir = Path(root_dir)

    def folder_path(self, folder: str) -> Path:
        return self.root_dir / folder

    def latest_folder(self) -> Optional[str]:
        raise NotImplementedError

    def load(self, folder: str) -> Optional[DatasetHandle]:
        raise NotImplementedError

    def resolve(self, folder: Optional[str] = None) -> Optional[DatasetHandle]:
        """Load the named folder, or the latest one when no name is given."""
        folder = folder or self.latest_folder()
        if not folder:
            return None
        return self.load(folder)


class FolderDatasetLocator(DatasetLocator):
    """Reads <root>/<mon>-<day>-<year>/complaint-intake.json from disk."""

    def __init__(self, root_dir: Union[str, Path], intake_filename: str = INTAKE_FILENAME):
        super().__init__(root_dir)
        self.intake_filename = intake_filename

    def latest_folder(self) -> Optional[str]:
        if not self.root_dir.is_dir():
            LOG.warning("Data root does not exist: %s", self.root_dir)
            return None

        latest_name, latest_key = None, -1
        for entry in self.root_dir.iterdir():
            if not entry.is_dir():
                continue
            folder_date = parse_folder_date(entry.name)
            if folder_date and folder_date.sort_key > latest_key:
                latest_name, latest_key = entry.name, folder_date.sort_key
        return latest_name

    def load(self, folder: str) -> Optional[DatasetHandle]:
        folder_date = parse_folder_date(folder)
        intake_path = self.folder_path(folder) / self.intake_filename
        if folder_date is None or not intake_path.is_file():
            LOG.warning("No intake file at %s", intake_path)
            return None

        try:
            dataset = Dataset.model_validate(json.loads(intake_path.read_text(encoding="utf-8")))
        except (ValueError, ValidationError) as e:
            LOG.warning("Could not parse %s: %s", intake_path, e)
            return None

        LOG.debug(f"Loaded {len(dataset.complaints)} complaints and "
                  f"{len(dataset.transcripts)} transcripts from {folder}")
        return DatasetHandle(folder=folder, date=folder_date.display,
                             path=self.folder_path(folder), dataset=dataset)


class InMemoryDatasetLocator(DatasetLocator):
    """Serves datasets held in memory; artifacts still land under root_dir."""

    def __init__(self, root_dir: Union[str, Path], datasets: Dict[str, Dataset]):
        super().__init__(root_dir)
        self.datasets = dict(datasets)

    def latest_folder(self) -> Optional[str]:
        dated = [(parse_folder_date(name), name) for name in self.datasets]
        dated = [(d.sort_key, name) for d, name in dated if d is not None]
        if dated:
            return max(dated)[1]
        return next(iter(self.datasets), None)

    def load(self, folder: str) -> Optional[DatasetHandle]:
        dataset = self.datasets.get(folder)
        if dataset is None:
            return None
        folder_date = parse_folder_date(folder)
        path = self.folder_path(folder)
        path.mkdir(parents=True, exist_ok=True)
        return DatasetHandle(folder=folder, date=folder_date.display if folder_date else folder,
                             path=path, dataset=dataset)


def locator_from_config(configs: ConfigType) -> DatasetLocator:
    """Folder-backed locator rooted at prompt_experiment.data_root."""
    return FolderDatasetLocator(
        get_config("prompt_experiment.data_root", configs, default="."),
        get_config("prompt_experiment.intake_filename", configs, default=INTAKE_FILENAME),
    )
