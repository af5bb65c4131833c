"""
Extraction of structured fields from free-text legal analysis.

RegexAnalysisParser is a best-effort text-to-struct extractor: every field
has a fixed fallback, and a fallback on the section list lowers the
confidence. A structured-output LLM mode can replace it behind
AnalysisParser without touching callers.
"""

import re
import logging
from dataclasses import dataclass

from .models import RiskLevel

logger = logging.getLogger(__name__)

SECTIONS_FALLBACK = "Analysis required"
VERDICT_FALLBACK = "Analysis required"
ARGUMENTS_FALLBACK = "Refer to detailed analysis."
RECOMMENDATIONS_FALLBACK = ""

CONFIDENCE_STRUCTURED = 0.90
CONFIDENCE_UNSTRUCTURED = 0.60
CONFIDENCE_PARSE_ERROR = 0.5

SUMMARY_CHARS = 500

# A block ends at a blank line, a newline followed by a letter, or end of text.
_BLOCK_END = r"(?=\n\n|\n[A-Z]|\Z)"

SECTION_PATTERN = re.compile(r"(?:IPC\s+)?(?:Section|Sec\.?)\s+(\d+[A-Z]?)", re.IGNORECASE)
VERDICT_PATTERN = re.compile(r"(?:Verdict(?:\s+Prediction)?|Outcome)[*:\s]+([\s\S]*?)" + _BLOCK_END, re.IGNORECASE)
RISK_PATTERN = re.compile(r"Risk\s+Assessment[*:\s]+(\w+)(?:\s*/\s*\w+)?", re.IGNORECASE)
ARGUMENTS_PATTERN = re.compile(
    r"(?:Key\s+Legal\s+Arguments|Arguments)[*:\s]+([\s\S]*?)" + _BLOCK_END, re.IGNORECASE,
)
RECOMMENDATIONS_PATTERN = re.compile(
    r"(?:Strategic\s+Roadmap|Recommended\s+Steps|Actions)[*:\s]+([\s\S]*?)" + _BLOCK_END,
    re.IGNORECASE,
)


@dataclass
class ParsedAnalysis:
    """Fields extracted from one LLM analysis response."""
    suggested_sections: list[str]
    summary: str
    analysis: str
    key_arguments: str
    possible_verdict: str
    risk_level: RiskLevel
    recommendations: str
    confidence: float

    @property
    def parse_degraded(self) -> bool:
        return self.confidence < CONFIDENCE_STRUCTURED


class AnalysisParser:
    """Interface for turning an LLM response into ParsedAnalysis."""

    def parse(self, response: str) -> ParsedAnalysis:
        raise NotImplementedError


class RegexAnalysisParser(AnalysisParser):
    """Targeted regex scans with per-field defaults."""

    def parse(self, response: str) -> ParsedAnalysis:
        try:
            return self._parse(response)
        except Exception as e:
            logger.error(f"Parse error: {e}")
            text = response if isinstance(response, str) else str(response or "")
            return ParsedAnalysis(
                suggested_sections=[],
                summary=text,
                analysis=text,
                key_arguments="",
                possible_verdict=VERDICT_FALLBACK,
                risk_level=RiskLevel.MEDIUM,
                recommendations=RECOMMENDATIONS_FALLBACK,
                confidence=CONFIDENCE_PARSE_ERROR,
            )

    def _parse(self, response: str) -> ParsedAnalysis:
        sections = self.extract_sections(response)
        return ParsedAnalysis(
            suggested_sections=sections or [SECTIONS_FALLBACK],
            summary=response[:SUMMARY_CHARS],
            analysis=response,
            key_arguments=self._block(ARGUMENTS_PATTERN, response) or ARGUMENTS_FALLBACK,
            possible_verdict=self.extract_verdict(response),
            risk_level=self.extract_risk(response),
            recommendations=self._block(RECOMMENDATIONS_PATTERN, response) or RECOMMENDATIONS_FALLBACK,
            confidence=CONFIDENCE_STRUCTURED if sections else CONFIDENCE_UNSTRUCTURED,
        )

    @staticmethod
    def extract_sections(response: str) -> list[str]:
        """'IPC Section N' for every section mention, de-duplicated in order."""
        seen: dict[str, None] = {}
        for match in SECTION_PATTERN.finditer(response):
            seen[f"IPC Section {match.group(1)}"] = None
        return list(seen)

    @staticmethod
    def extract_verdict(response: str) -> str:
        match = VERDICT_PATTERN.search(response)
        if not match:
            return VERDICT_FALLBACK
        first_line = match.group(1).strip().split("\n")[0].strip()
        return first_line or VERDICT_FALLBACK

    @staticmethod
    def extract_risk(response: str) -> RiskLevel:
        match = RISK_PATTERN.search(response)
        return RiskLevel.parse(match.group(1) if match else None)

    @staticmethod
    def _block(pattern: re.Pattern, response: str) -> str:
        match = pattern.search(response)
        return match.group(1).strip() if match else ""
