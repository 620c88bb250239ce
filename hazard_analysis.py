"""
Hazard response normalization and severity escalation.

The vision model is asked for one of two output shapes:

  structured  {"hazards": [...], "severity": "HIGH|MEDIUM|LOW",
               "safe_direction": "..."}
  brief       free text ending in a HIGH/MED/LOW token, e.g.
              "STOP. Construction barriers ahead. HIGH"

parse_model_output() sniffs the raw text and returns a tagged variant
(StructuredHazardOutput or FreeTextHazardOutput).  safeguard() takes either
variant and produces the HazardDetectionResponse sent to the client, with
the severity passed through escalate_severity() so a STOP/CAUTION/SLOW
instruction is never reported as LOW.

Everything here is pure: no I/O beyond logging.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from service_errors import MalformedModelOutput

logger = logging.getLogger(__name__)

# Spoken when the model's answer reduces to nothing after cleanup.
FALLBACK_SPEECH_TEXT = "Unable to analyze image properly"

STRUCTURED = "structured"
FREE_TEXT = "free_text"

# Trailing severity token: a whole word at the very end, optionally followed
# by periods/whitespace.  The word boundary keeps "...go SLOW" from being
# read as a LOW token.
_TRAILING_SEVERITY_RE = re.compile(
    r"\b(HIGH|MEDIUM|MED|LOW)\b[.!\s]*$",
    re.IGNORECASE,
)
_DANGLING_SEPARATORS = " \t\n,;:-"

_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


# =============================================================================
# Data model
# =============================================================================

class Severity(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def short_label(self) -> str:
        """Label in the free-text vocabulary (HIGH/MED/LOW)."""
        return "MED" if self is Severity.MEDIUM else self.value

    @classmethod
    def from_token(cls, token: Any) -> Optional["Severity"]:
        """Parse HIGH/MEDIUM/MED/LOW (any case); None for anything else."""
        if not isinstance(token, str):
            return None
        token = token.strip().upper()
        if token == "MED":
            return cls.MEDIUM
        try:
            return cls(token)
        except ValueError:
            return None


class Position(Enum):
    FRONT = "FRONT"
    LEFT = "LEFT"
    RIGHT = "RIGHT"


@dataclass(frozen=True)
class HazardRecord:
    """One finding reported by the model."""
    position: Position
    category: str
    severity: Severity  # HIGH or MEDIUM only
    description: str


@dataclass(frozen=True)
class HazardAnalysis:
    """Canonical form of a structured model response."""
    findings: Tuple[HazardRecord, ...]
    overall_severity: Optional[Severity]
    safe_direction: str


@dataclass(frozen=True)
class StructuredHazardOutput:
    analysis: HazardAnalysis
    speech_text: str
    kind = STRUCTURED

    @property
    def declared_severity(self) -> Optional[Severity]:
        return self.analysis.overall_severity


@dataclass(frozen=True)
class FreeTextHazardOutput:
    speech_text: str
    severity: Severity
    kind = FREE_TEXT

    @property
    def declared_severity(self) -> Optional[Severity]:
        return self.severity


HazardOutput = Union[StructuredHazardOutput, FreeTextHazardOutput]


@dataclass(frozen=True)
class HazardDetectionResponse:
    speech_text: str
    severity: Severity
    # Free-text answers report MED rather than MEDIUM.
    short_labels: bool = False

    @property
    def severity_label(self) -> str:
        return self.severity.short_label if self.short_labels else self.severity.value

    def to_dict(self) -> Dict[str, str]:
        return {"speechText": self.speech_text, "severity": self.severity_label}


# =============================================================================
# Parsing
# =============================================================================

def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def strip_severity_token(text: str) -> Tuple[str, Optional[Severity]]:
    """Remove a trailing severity token.

    Returns the cleaned, whitespace-collapsed text and the token's severity,
    or None when the text does not end in a token.
    """
    text = (text or "").strip()
    match = _TRAILING_SEVERITY_RE.search(text)
    if not match:
        return collapse_whitespace(text), None
    remainder = text[:match.start()].rstrip(_DANGLING_SEPARATORS)
    return collapse_whitespace(remainder), Severity.from_token(match.group(1))


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE_RE.match(text)
    return match.group(1) if match else text


def _parse_record(raw: Any) -> Optional[HazardRecord]:
    if not isinstance(raw, dict):
        logger.warning("Dropping hazard entry that is not an object: %r", raw)
        return None
    try:
        position = Position(str(raw.get("position", "")).strip().upper())
    except ValueError:
        logger.warning("Dropping hazard with unknown position: %r", raw.get("position"))
        return None
    severity = Severity.from_token(raw.get("severity"))
    if severity not in (Severity.HIGH, Severity.MEDIUM):
        logger.warning("Dropping hazard with invalid severity: %r", raw.get("severity"))
        return None
    return HazardRecord(
        position=position,
        category=str(raw.get("type") or raw.get("category") or ""),
        severity=severity,
        description=collapse_whitespace(str(raw.get("description") or "")),
    )


def parse_hazard_analysis(text: str) -> HazardAnalysis:
    """Parse the structured JSON shape into a HazardAnalysis.

    Raises MalformedModelOutput when the text is not a JSON object or lacks
    ``severity`` / ``safe_direction``.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedModelOutput(
            f"Vision model returned invalid JSON: {e.msg}", payload=text
        ) from e

    if not isinstance(data, dict):
        raise MalformedModelOutput("Vision model returned a non-object JSON value", payload=text)

    missing = [k for k in ("severity", "safe_direction") if data.get(k) is None]
    if missing:
        raise MalformedModelOutput(
            "Vision model response is missing required fields: " + ", ".join(missing),
            payload=text,
        )
    if not isinstance(data["safe_direction"], str):
        raise MalformedModelOutput("safe_direction is not a string", payload=text)

    hazards = data.get("hazards")
    if hazards is None:
        hazards = []
    if not isinstance(hazards, list):
        raise MalformedModelOutput("hazards is not a list", payload=text)

    overall = Severity.from_token(data["severity"])
    if overall is None:
        logger.warning(
            "Unrecognised overall severity %r, deciding from safe_direction", data["severity"]
        )

    findings = tuple(r for r in (_parse_record(h) for h in hazards) if r is not None)
    return HazardAnalysis(
        findings=findings,
        overall_severity=overall,
        safe_direction=data["safe_direction"],
    )


def parse_free_text(text: str) -> FreeTextHazardOutput:
    speech, token = strip_severity_token(text)
    if token is None:
        # Unknown signal, presumed non-trivial.
        token = Severity.MEDIUM
    return FreeTextHazardOutput(speech_text=speech, severity=token)


def parse_model_output(raw: Optional[str], expect: Optional[str] = None) -> HazardOutput:
    """Dispatch raw model text to the structured or free-text parser.

    Text that looks like a JSON object is parsed as structured output.  When
    ``expect`` is ``"structured"`` the model was told to answer in JSON, so
    anything else is treated as malformed rather than as free text.
    """
    if raw is None:
        raise MalformedModelOutput("Vision model returned no text")

    text = _strip_code_fence(raw.strip())
    if text.startswith("{") or expect == STRUCTURED:
        analysis = parse_hazard_analysis(text)
        speech, _ = strip_severity_token(analysis.safe_direction)
        return StructuredHazardOutput(analysis=analysis, speech_text=speech)
    return parse_free_text(text)


# =============================================================================
# Severity escalation
# =============================================================================

def escalate_severity(declared: Optional[Severity], speech_text: str) -> Severity:
    """Severity to report for a declared level and the spoken instruction.

    A declared HIGH or MEDIUM is trusted as-is.  Otherwise the instruction
    prefix decides: STOP -> HIGH, CAUTION/SLOW -> MEDIUM, anything else LOW.
    """
    if declared is Severity.HIGH:
        return Severity.HIGH
    if declared is Severity.MEDIUM:
        return Severity.MEDIUM

    instruction = (speech_text or "").lstrip().upper()
    if instruction.startswith("STOP"):
        return Severity.HIGH
    if instruction.startswith("CAUTION") or instruction.startswith("SLOW"):
        return Severity.MEDIUM
    return Severity.LOW


def safeguard(output: HazardOutput) -> HazardDetectionResponse:
    """Turn a parsed model output into the client response."""
    speech = output.speech_text
    severity = escalate_severity(output.declared_severity, speech)

    if not speech:
        logger.warning("Empty speech text after processing %s output", output.kind)
        speech = FALLBACK_SPEECH_TEXT
        severity = Severity.MEDIUM

    return HazardDetectionResponse(
        speech_text=speech,
        severity=severity,
        short_labels=output.kind == FREE_TEXT,
    )


def normalize_hazard_output(raw: Optional[str], expect: Optional[str] = None) -> HazardDetectionResponse:
    """parse_model_output() followed by safeguard()."""
    return safeguard(parse_model_output(raw, expect=expect))
