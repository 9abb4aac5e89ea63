"""End-to-end verification scenarios and their reports."""

from .operator_checks import check_operator
from .report import ScenarioReport, StageResult
from .scenario import SubmissionScenario, check_descriptor

__all__ = ["ScenarioReport", "StageResult", "SubmissionScenario", "check_descriptor", "check_operator"]
