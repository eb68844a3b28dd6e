"""Lockup scenario runner package."""

from .models import ScenarioReport
from .runner import LockupScenarioRunner, ScenarioStepName

__all__ = ["LockupScenarioRunner", "ScenarioReport", "ScenarioStepName"]
