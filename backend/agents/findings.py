"""Findings marker extraction for worker output.

Workers may end their output with a marker such as::

    SUMMARY: {"warnings": 1, "critical": 0}

``parse_findings_marker`` turns the finished text into a result object. It
never raises: a malformed marker is reported through ``error`` and logged, and
the caller keeps the raw text with zero findings.
"""

import json
import re
from dataclasses import dataclass

import structlog
from pydantic import ValidationError

from agents.utils import find_balanced_object
from models.domain import Findings

logger = structlog.get_logger()

FINDINGS_MARKER = "SUMMARY:"

_MARKER_PATTERN = re.compile(r"SUMMARY:[ \t]*")


@dataclass(frozen=True)
class FindingsParseResult:
    """Outcome of scanning a worker's output for a findings marker.

    Attributes:
        findings: Parsed findings, zero when absent or malformed
        display_text: Text to show in the log (marker stripped only on success)
        error: Parse failure description, None when there was nothing to fix
        has_marker: Whether the text contained a marker at all
    """

    findings: Findings
    display_text: str
    error: str | None = None
    has_marker: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_findings_marker(text: str) -> FindingsParseResult:
    """Extract and strip the last findings marker in ``text``.

    Returns:
        - no marker: zero findings, text unchanged, no error
        - well-formed marker: its findings, text with the marker removed
        - malformed marker: zero findings, text unchanged, ``error`` set
    """
    matches = list(_MARKER_PATTERN.finditer(text))
    if not matches:
        return FindingsParseResult(findings=Findings(), display_text=text)

    marker = matches[-1]
    payload = find_balanced_object(text, marker.end())
    if payload is None:
        error = "marker is not followed by a JSON object"
    else:
        try:
            findings = Findings.model_validate(json.loads(payload), strict=True)
        except json.JSONDecodeError as e:
            error = f"invalid JSON: {e.msg}"
        except ValidationError as e:
            error = f"invalid findings: {e.error_count()} validation error(s)"
        else:
            end = marker.end() + len(payload)
            display_text = (text[: marker.start()] + text[end:]).rstrip()
            return FindingsParseResult(
                findings=findings, display_text=display_text, has_marker=True
            )

    logger.warning(
        "findings_marker_malformed",
        error=error,
        marker_preview=text[marker.start() : marker.start() + 80],
    )
    return FindingsParseResult(
        findings=Findings(), display_text=text, error=error, has_marker=True
    )
