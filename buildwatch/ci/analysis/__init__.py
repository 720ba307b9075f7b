"""
CI failure analysis.
"""

from buildwatch.ci.analysis.error_classifier import (
    RULES,
    Classification,
    ClassificationRule,
    FailureCategory,
    classify,
    error_context,
    summarize,
)

__all__ = [
    "RULES",
    "Classification",
    "ClassificationRule",
    "FailureCategory",
    "classify",
    "error_context",
    "summarize",
]
