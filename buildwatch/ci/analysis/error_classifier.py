"""
CI Error Classifier - Keyword rule table for build failures.

Rules are data: an ordered list of (category, keywords, confidence,
suggestions). The first rule with a keyword found in the text wins, so
order decides precedence. All entry points are pure functions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum


class FailureCategory(StrEnum):
    """Failure taxonomy."""

    KUBERNETES = "kubernetes"
    DOCKER = "docker"
    DEPENDENCIES = "dependencies"
    TESTS = "tests"
    BUILD = "build"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the rule table."""

    category: FailureCategory
    keywords: tuple[str, ...]
    confidence: float
    suggestions: tuple[str, ...] = ()

    def matches(self, lowered_text: str) -> bool:
        return any(keyword in lowered_text for keyword in self.keywords)


@dataclass(frozen=True)
class Classification:
    """Result of classify()."""

    category: FailureCategory
    confidence: float
    suggestions: list[str] = field(default_factory=list)


RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        category=FailureCategory.KUBERNETES,
        keywords=(
            "kubectl",
            "kubernetes",
            "k8s",
            "kubeconfig",
            "crashloopbackoff",
            "imagepullbackoff",
            "the connection to the server",
        ),
        confidence=0.9,
        suggestions=(
            "Check that the cluster API server is reachable from the CI agent",
            "Verify the kubeconfig context and credentials used by the pipeline",
            "Inspect pod events with `kubectl describe pod`",
        ),
    ),
    ClassificationRule(
        category=FailureCategory.DOCKER,
        keywords=(
            "docker",
            "dockerfile",
            "container",
            "registry",
            "manifest unknown",
            "image pull",
            "denied: requested access",
        ),
        confidence=0.85,
        suggestions=(
            "Check that the Docker daemon is running on the agent",
            "Verify registry credentials and image tags",
            "Rebuild the image locally to reproduce the failure",
        ),
    ),
    ClassificationRule(
        category=FailureCategory.DEPENDENCIES,
        keywords=(
            "npm install",
            "npm err",
            "yarn install",
            "pip install",
            "no matching distribution",
            "could not resolve dependenc",
            "cannot find module",
            "modulenotfounderror",
            "dependency",
        ),
        confidence=0.7,
        suggestions=(
            "Clear the dependency cache and retry the install",
            "Check network access to the package registry",
            "Pin or update the failing package version",
        ),
    ),
    ClassificationRule(
        category=FailureCategory.TESTS,
        keywords=(
            "test failed",
            "tests failed",
            "failing test",
            "assertionerror",
            "assertion failed",
            "pytest",
            "jest",
            "junit",
        ),
        confidence=0.8,
        suggestions=(
            "Run the failing tests locally",
            "Check recent changes to the code under test",
            "Look for flaky tests that depend on timing or ordering",
        ),
    ),
    ClassificationRule(
        category=FailureCategory.BUILD,
        keywords=(
            "compilation",
            "compile error",
            "build failed",
            "syntaxerror",
            "syntax error",
            "make: ***",
            "webpack",
            "tsc",
        ),
        confidence=0.6,
        suggestions=(
            "Reproduce the build locally with the same toolchain version",
            "Check the first compiler error; later errors often follow from it",
        ),
    ),
)

UNKNOWN_SUGGESTIONS = ("Review the full console output for the failing stage",)

# Line markers used by summarize(), matched case-insensitively
ERROR_MARKERS = re.compile(
    r"error:|failed:|exception|fatal:|exit code\b.*\b1\b|unable to",
    re.IGNORECASE,
)

SUMMARY_FALLBACK = "No error lines found in console output"
SUMMARY_SEPARATOR = " | "
SUMMARY_MAX_LINES = 2

# Lines kept on each side of an error line by error_context()
ERROR_CONTEXT_RADIUS = 2


def classify(
    error_text: str,
    rules: tuple[ClassificationRule, ...] = RULES,
) -> Classification:
    """
    Classify failure text with the first matching rule.

    Args:
        error_text: Console output or error message
        rules: Ordered rule table (default: RULES)

    Returns:
        Classification; category UNKNOWN with confidence 0 when nothing matches
    """
    lowered = (error_text or "").lower()
    for rule in rules:
        if rule.matches(lowered):
            return Classification(rule.category, rule.confidence, list(rule.suggestions))
    return Classification(FailureCategory.UNKNOWN, 0.0, list(UNKNOWN_SUGGESTIONS))


def summarize(error_text: str) -> str:
    """Join the first lines carrying an error marker, or return the fallback."""
    matched: list[str] = []
    for line in (error_text or "").splitlines():
        stripped = line.strip()
        if stripped and ERROR_MARKERS.search(stripped):
            matched.append(stripped)
            if len(matched) == SUMMARY_MAX_LINES:
                break
    return SUMMARY_SEPARATOR.join(matched) if matched else SUMMARY_FALLBACK


def error_context(error_text: str, radius: int = ERROR_CONTEXT_RADIUS) -> str:
    """
    Return the lines around every error-marker line, in console order.

    Args:
        error_text: Console output
        radius: Lines kept on each side of a marker line

    Returns:
        The surrounding lines joined by newlines, or "" when no line has a marker
    """
    lines = (error_text or "").splitlines()
    keep: set[int] = set()
    for index, line in enumerate(lines):
        if ERROR_MARKERS.search(line):
            keep.update(range(max(0, index - radius), min(len(lines), index + radius + 1)))
    return "\n".join(lines[index] for index in sorted(keep))
