"""Security-context and resource-shape compliance checks."""

from .assertion import ComplianceAssertion, ComplianceReport, Violation
from .rules import LIVE_POD_RULES, SECURITY_RULES, ComplianceRule, application_rules, resource_shape_rules

__all__ = [
    "ComplianceAssertion",
    "ComplianceReport",
    "ComplianceRule",
    "LIVE_POD_RULES",
    "SECURITY_RULES",
    "Violation",
    "application_rules",
    "resource_shape_rules",
]
