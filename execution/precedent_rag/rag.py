"""
Retrieval-augmented case analysis.

One analyze() call runs, in order:
1. classify the case type (unless a specific hint is given)
2. local vector retrieval
3. live Indian Kanoon retrieval
4. merge, local matches first
5. augmented prompt + LLM analysis
6. parse the response into structured fields
7. lawyer recommendations

Steps 1-3 and 7 are best-effort and fall back to defaults. Step 5 is the
only mandatory one: if it fails the caller gets AnalysisFailed.
"""

import logging
from typing import Optional
from dataclasses import dataclass

from .errors import AnalysisFailed
from .models import AnalysisResult, MatchSource, RetrievedMatch
from .analysis_parser import AnalysisParser, RegexAnalysisParser
from .lawyers import LawyerDirectory, recommend_lawyers
from . import prompts

logger = logging.getLogger(__name__)

LIVE_DEFAULT_VERDICT = "Refer to full judgment"
QUERY_FALLBACK_CHARS = 100


@dataclass
class RAGConfig:
    """Retrieval and enrichment knobs for one analysis."""
    local_top_k: int = 3
    live_hits: int = 2
    live_query_count: int = 2
    min_query_length: int = 6
    live_similarity: float = 0.9  # Live hits are unranked; fixed nominal score
    enrich_content_chars: int = 1000
    enrich_verdict_chars: int = 200
    lawyer_limit: int = 3


class RAGAnalyzer:
    """
    Orchestrates classification, retrieval, generation and parsing.

    Usage:
        analyzer = RAGAnalyzer(LLMClient(), index, KanoonClient(), lawyers=directory)
        result = analyzer.analyze("The accused entered the house at night ...")
        print(result.case_type, result.suggested_sections, result.confidence)
    """

    def __init__(
        self,
        llm,
        index,
        kanoon,
        lawyers: Optional[LawyerDirectory] = None,
        parser: Optional[AnalysisParser] = None,
        config: Optional[RAGConfig] = None,
    ):
        self.llm = llm
        self.index = index
        self.kanoon = kanoon
        self.lawyers = lawyers
        self.parser = parser or RegexAnalysisParser()
        self.config = config or RAGConfig()

    def classify_case_type(self, description: str) -> str:
        """Closed-set classification; 'General' when the call fails."""
        try:
            category = self.llm.complete(
                prompts.build_classification_prompt(description),
                system_prompt=prompts.CLASSIFIER_SYSTEM_PROMPT,
                temperature=0,
            )
        except Exception as e:
            logger.warning(f"Classification failed: {e}")
            return prompts.DEFAULT_CASE_TYPE

        cleaned = category.strip().replace("'", "").replace('"', "").replace(".", "").strip()
        return cleaned or prompts.DEFAULT_CASE_TYPE

    def generate_search_queries(self, description: str) -> list[str]:
        try:
            response = self.llm.complete(
                prompts.build_search_query_prompt(description, self.config.live_query_count),
                system_prompt=prompts.SEARCH_QUERY_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.warning(f"Query generation failed: {e}")
            return [description[:QUERY_FALLBACK_CHARS]]

        queries = [q.strip() for q in response.split("|")]
        queries = [q for q in queries if len(q) >= self.config.min_query_length]
        return queries[:self.config.live_query_count]

    def retrieve_local(self, case_type: str, description: str) -> list[RetrievedMatch]:
        query = f"{case_type} case: {description}"
        try:
            matches = self.index.search_similar(query, self.config.local_top_k)
        except Exception as e:
            logger.warning(f"Vector search failed (non-critical): {e}")
            return []
        logger.info(f"Retrieved {len(matches)} local cases")
        return matches

    def retrieve_live(self, description: str) -> list[RetrievedMatch]:
        try:
            queries = self.generate_search_queries(description)
            logger.info(f"Live Queries: {' | '.join(queries)}")
            if not queries:
                return []

            logger.info(f"Searching Indian Kanoon for: \"{queries[0]}\"...")
            results = self.kanoon.search(queries[0], page=0, max_pages=1)
            if not results.docs:
                return []

            matches = [
                RetrievedMatch(
                    precedent_ref=str(doc.tid),
                    case_number=str(doc.tid),
                    title=doc.title,
                    similarity=self.config.live_similarity,
                    source=MatchSource.LIVE_EXTERNAL,
                    content=doc.headline or doc.title,
                    verdict=LIVE_DEFAULT_VERDICT,
                )
                for doc in results.docs[:self.config.live_hits]
            ]
        except Exception as e:
            logger.warning(f"Live Kanoon search failed: {e}")
            return []

        self._enrich(matches[0])
        logger.info(f"Added {len(matches)} live cases from Indian Kanoon")
        return matches

    def _enrich(self, match: RetrievedMatch) -> None:
        """Replace a live hit's snippet with the full judgment's summary and decision."""
        try:
            details = self.kanoon.fetch_details(match.precedent_ref)
        except Exception as e:
            logger.warning(f"Failed to fetch full details for live case {match.precedent_ref}: {e}")
            return
        decision = details.decision or ""
        match.content = details.summary or decision[:self.config.enrich_content_chars]
        match.verdict = decision[:self.config.enrich_verdict_chars] + "..."

    def analyze(self, description: str, case_type_hint: Optional[str] = None) -> AnalysisResult:
        """
        Run the full retrieval-augmented analysis for one case description.

        Raises:
            AnalysisFailed: the LLM analysis call failed
        """
        logger.info("Starting RAG analysis...")

        case_type = case_type_hint
        if not case_type or case_type == prompts.DEFAULT_CASE_TYPE:
            logger.info("Auto-detecting case type...")
            case_type = self.classify_case_type(description)
            logger.info(f"Detected Case Type: {case_type}")

        local = self.retrieve_local(case_type, description)
        live = self.retrieve_live(description)
        matches = local + live

        prompt = prompts.build_augmented_prompt(description, case_type, matches)
        logger.info("Generating analysis with LLM...")
        try:
            response = self.llm.complete(prompt, system_prompt=prompts.LEGAL_SYSTEM_PROMPT)
        except Exception as e:
            logger.error(f"RAG analysis failed: {e}")
            raise AnalysisFailed(f"Analysis generation failed: {e}", cause=e) from e

        parsed = self.parser.parse(response)
        if parsed.parse_degraded:
            logger.warning(f"Analysis parsed with reduced confidence ({parsed.confidence})")

        lawyers = recommend_lawyers(self.lawyers, case_type, self.config.lawyer_limit)

        return AnalysisResult(
            case_type=case_type,
            suggested_sections=parsed.suggested_sections,
            summary=parsed.summary,
            analysis=parsed.analysis,
            key_arguments=parsed.key_arguments,
            possible_verdict=parsed.possible_verdict,
            risk_level=parsed.risk_level,
            recommendations=parsed.recommendations,
            confidence=parsed.confidence,
            parse_degraded=parsed.parse_degraded,
            retrieved_matches=matches,
            recommended_lawyers=lawyers,
        )

    def compare_with_precedents(self, current_case: dict, precedents) -> str:
        """Free-text comparison of a case against stored precedents."""
        try:
            return self.llm.complete(
                prompts.build_comparison_prompt(current_case, precedents),
                system_prompt=prompts.LEGAL_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.error(f"Comparison error: {e}")
            raise AnalysisFailed(f"Comparison failed: {e}", cause=e) from e

    def legal_insights(self, context: str) -> str:
        try:
            return self.llm.complete(
                prompts.build_insights_prompt(context),
                system_prompt=prompts.LEGAL_SYSTEM_PROMPT,
            )
        except Exception as e:
            logger.error(f"Insights error: {e}")
            raise AnalysisFailed(f"Insights generation failed: {e}", cause=e) from e
