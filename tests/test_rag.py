"""
Tests for execution/precedent_rag/rag.py

Covers: case-type classification, live query generation, local and live
        retrieval, enrichment, the end-to-end analyze() pipeline and its
        failure modes.

FakeLLM routes by system prompt:
    classifier -> "legal classifier"
    queries    -> "legal search expert"
    analysis   -> "expert Indian legal advisor"
"""

from unittest.mock import MagicMock

import pytest

from tests.conftest import FakeKanoonClient, FakeLLM, MockEmbeddingService, make_hit, make_precedent

CLASSIFIER = "legal classifier"
SEARCH = "legal search expert"
ADVISOR = "expert Indian legal advisor"

BREACH_OF_TRUST_ANALYSIS = """**Applicable IPC Sections**: Section 405 IPC applies to the entrusted funds.

**Key Legal Arguments**: Entrustment is documented.

**Risk Assessment**: Medium

**Verdict Prediction**: Conviction is likely.
"""


def _analyzer(llm, store=None, kanoon=None, embeddings=None, lawyers=None):
    from execution.precedent_rag.precedent_store import InMemoryPrecedentStore
    from execution.precedent_rag.rag import RAGAnalyzer
    from execution.precedent_rag.vector_index import BruteForceIndex
    store = store if store is not None else InMemoryPrecedentStore()
    index = BruteForceIndex(store, embeddings or MockEmbeddingService())
    return RAGAnalyzer(llm, index, kanoon or FakeKanoonClient(), lawyers=lawyers)


def _seed_embedded(store, tid, vector, **overrides):
    record = store.upsert_by_external_id(make_precedent(tid, **overrides)).record
    store.set_embedding(record.id, vector)
    return record


# ---------------------------------------------------------------------------
# Classification and query generation
# ---------------------------------------------------------------------------

class TestClassification:

    def test_cleans_quotes_and_periods(self):
        llm = FakeLLM({CLASSIFIER: ' "Criminal." '})
        assert _analyzer(llm).classify_case_type("a theft at night") == "Criminal"
        assert llm.calls[0]["temperature"] == 0

    def test_failure_falls_back_to_general(self):
        from execution.precedent_rag.errors import UpstreamUnavailable
        llm = FakeLLM({CLASSIFIER: UpstreamUnavailable("LLM", "down")})
        assert _analyzer(llm).classify_case_type("anything") == "General"

    def test_empty_response_falls_back_to_general(self):
        llm = FakeLLM({CLASSIFIER: "  ."})
        assert _analyzer(llm).classify_case_type("anything") == "General"


class TestQueryGeneration:

    def test_pipe_split_and_filtered(self):
        llm = FakeLLM({SEARCH: "Section 420 IPC cheating | abc | breach of trust employer | third query"})
        queries = _analyzer(llm).generate_search_queries("desc")
        assert queries == ["Section 420 IPC cheating", "breach of trust employer"]

    def test_failure_uses_truncated_description(self):
        from execution.precedent_rag.errors import Timeout
        llm = FakeLLM({SEARCH: Timeout("LLM", "slow")})
        description = "d" * 250
        assert _analyzer(llm).generate_search_queries(description) == ["d" * 100]


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

class TestRetrieval:

    def test_local_empty_store(self):
        llm = FakeLLM()
        assert _analyzer(llm).retrieve_local("Criminal", "theft") == []

    def test_local_ranked_and_bounded(self, memory_store):
        embeddings = MockEmbeddingService(vectors={"theft": [1.0, 0.0]})
        for tid, vector in enumerate([[0.0, 1.0], [1.0, 0.1], [0.6, 0.4], [1.0, 0.0]], start=1):
            _seed_embedded(memory_store, tid, vector)

        matches = _analyzer(FakeLLM(), memory_store, embeddings=embeddings).retrieve_local("Criminal", "theft")

        assert [m.title for m in matches] == ["Case 4", "Case 2", "Case 3"]
        assert embeddings.calls == ["Criminal case: theft"]

    def test_local_failure_is_non_fatal(self, memory_store):
        _seed_embedded(memory_store, 1, [1.0, 0.0])
        embeddings = MockEmbeddingService(fail_on=lambda text: True)
        assert _analyzer(FakeLLM(), memory_store, embeddings=embeddings).retrieve_local("Civil", "x") == []

    def test_live_matches_and_enrichment(self):
        from execution.precedent_rag.models import MatchSource
        kanoon = FakeKanoonClient(
            search_results={"breach of trust employer": [
                make_hit(11, headline="<b>entrusted</b> funds"),
                make_hit(12),
                make_hit(13),
            ]},
            details={"11": make_precedent(11, summary="", decision="D" * 300)},
        )
        llm = FakeLLM({SEARCH: "breach of trust employer | Section 405 IPC employer"})

        matches = _analyzer(llm, kanoon=kanoon).retrieve_live("employee kept company funds")

        assert kanoon.search_calls == ["breach of trust employer"]
        assert [m.precedent_ref for m in matches] == ["11", "12"]
        assert all(m.source == MatchSource.LIVE_EXTERNAL for m in matches)
        assert all(m.similarity == 0.9 for m in matches)
        assert matches[0].content == "D" * 300
        assert matches[0].verdict == "D" * 200 + "..."
        assert matches[1].content == "Case 12"
        assert matches[1].verdict == "Refer to full judgment"

    def test_enrichment_failure_keeps_snippet(self):
        kanoon = FakeKanoonClient(search_results={"query one": [make_hit(11, headline="snippet")]})
        llm = FakeLLM({SEARCH: "query one"})

        matches = _analyzer(llm, kanoon=kanoon).retrieve_live("desc")

        assert matches[0].content == "snippet"
        assert matches[0].verdict == "Refer to full judgment"

    def test_live_search_failure_is_non_fatal(self):
        from execution.precedent_rag.errors import AuthenticationError
        kanoon = FakeKanoonClient(search_results={"query one": AuthenticationError("Kanoon API", "no token")})
        llm = FakeLLM({SEARCH: "query one"})
        assert _analyzer(llm, kanoon=kanoon).retrieve_live("desc") == []

    def test_no_usable_queries(self):
        kanoon = FakeKanoonClient()
        llm = FakeLLM({SEARCH: "a | b"})
        assert _analyzer(llm, kanoon=kanoon).retrieve_live("desc") == []
        assert kanoon.search_calls == []


# ---------------------------------------------------------------------------
# analyze()
# ---------------------------------------------------------------------------

class TestAnalyze:

    def _llm(self, analysis=BREACH_OF_TRUST_ANALYSIS):
        return FakeLLM({
            CLASSIFIER: "Criminal",
            SEARCH: "criminal breach of trust | Section 405 IPC",
            ADVISOR: analysis,
        })

    def test_breach_of_trust_scenario(self, memory_store, lawyer_directory):
        from execution.precedent_rag.models import MatchSource, RiskLevel
        _seed_embedded(memory_store, 1, [1.0, 0.0], title="Employer funds case")
        kanoon = FakeKanoonClient(search_results={"criminal breach of trust": [make_hit(21), make_hit(22)]})
        llm = self._llm()
        embeddings = MockEmbeddingService(vectors={"case:": [1.0, 0.0]})

        result = _analyzer(llm, memory_store, kanoon, embeddings, lawyers=lawyer_directory).analyze(
            "The employee kept Rs. 5 lakh of company funds entrusted for vendor payments."
        )

        assert result.case_type == "Criminal"
        assert "IPC Section 405" in result.suggested_sections
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.confidence == 0.90
        assert result.parse_degraded is False
        assert result.possible_verdict == "Conviction is likely."
        assert [m.source for m in result.retrieved_matches] == [
            MatchSource.LOCAL_VECTOR, MatchSource.LIVE_EXTERNAL, MatchSource.LIVE_EXTERNAL,
        ]
        assert [l.id for l in result.recommended_lawyers] == ["l2", "l1"]

    def test_prompt_lists_local_before_live(self, memory_store):
        _seed_embedded(memory_store, 1, [1.0, 0.0], title="Local Precedent")
        kanoon = FakeKanoonClient(search_results={"criminal breach of trust": [make_hit(21, title="Live Precedent")]})
        llm = self._llm()

        _analyzer(llm, memory_store, kanoon, MockEmbeddingService(vectors={"case:": [1.0, 0.0]})).analyze("funds kept")

        prompt = [c for c in llm.calls if ADVISOR in c["system_prompt"]][0]["prompt"]
        assert prompt.startswith("CASE TYPE: Criminal")
        assert prompt.index("Local Precedent") < prompt.index("Live Precedent")
        assert "Source: Local Database" in prompt
        assert "Source: Live Indian Kanoon" in prompt

    def test_specific_hint_skips_classification(self):
        llm = self._llm()
        result = _analyzer(llm).analyze("tenant dispute", case_type_hint="Property")
        assert result.case_type == "Property"
        assert not any(CLASSIFIER in c["system_prompt"] for c in llm.calls)

    def test_general_hint_triggers_classification(self):
        llm = self._llm()
        assert _analyzer(llm).analyze("funds kept", case_type_hint="General").case_type == "Criminal"

    def test_works_with_no_matches(self):
        result = _analyzer(self._llm()).analyze("funds kept")
        assert result.retrieved_matches == []
        assert result.recommended_lawyers == []
        assert result.confidence == 0.90

    def test_unstructured_response_is_degraded(self):
        result = _analyzer(self._llm("I cannot say much without more facts.")).analyze("x")
        assert result.suggested_sections == ["Analysis required"]
        assert result.confidence == 0.60
        assert result.parse_degraded is True

    def test_llm_failure_raises_analysis_failed(self):
        from execution.precedent_rag.errors import AnalysisFailed, UpstreamUnavailable
        llm = FakeLLM({
            CLASSIFIER: "Criminal",
            SEARCH: "query one",
            ADVISOR: UpstreamUnavailable("xAI LLM", "HTTP 503"),
        })
        with pytest.raises(AnalysisFailed) as exc_info:
            _analyzer(llm).analyze("funds kept")
        assert isinstance(exc_info.value.cause, UpstreamUnavailable)

    def test_unexpected_llm_error_raises_analysis_failed(self):
        from execution.precedent_rag.errors import AnalysisFailed
        llm = FakeLLM({
            CLASSIFIER: "Criminal",
            SEARCH: "query one",
            ADVISOR: ValueError("malformed completion payload"),
        })
        with pytest.raises(AnalysisFailed, match="malformed completion payload") as exc_info:
            _analyzer(llm).analyze("funds kept")
        assert isinstance(exc_info.value.cause, ValueError)

    def test_business_partner_scenario_on_empty_store(self):
        from execution.precedent_rag.models import RiskLevel
        llm = FakeLLM({
            CLASSIFIER: "Corporate",
            SEARCH: "business partner competing company",
            ADVISOR: "Section 405 may apply where the client database was entrusted to the partner.",
        })

        result = _analyzer(llm).analyze(
            "My business partner secretly started a competing company and stole our client database."
        )

        assert result.case_type == "Corporate"
        assert result.retrieved_matches == []
        assert "IPC Section 405" in result.suggested_sections
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.confidence == 0.90

    def test_result_dict(self):
        data = _analyzer(self._llm()).analyze("funds kept").to_dict()
        assert data["risk_level"] == "Medium"
        assert data["key_points"][0].startswith("**Applicable IPC Sections**")
        assert "analyzed_at" in data


class TestCompareAndInsights:

    def test_compare_lists_precedents(self):
        llm = FakeLLM({ADVISOR: "Similar facts."})
        precedents = [make_precedent(1, title="A vs B"), make_precedent(2, title="C vs D")]

        text = _analyzer(llm).compare_with_precedents(
            {"title": "X vs Y", "description": "funds", "case_type": "Criminal"}, precedents,
        )

        assert text == "Similar facts."
        prompt = llm.calls[0]["prompt"]
        assert "1. A vs B (2020) - unknown" in prompt
        assert "Type: Criminal" in prompt

    def test_insights_failure(self):
        from execution.precedent_rag.errors import AnalysisFailed, Timeout
        llm = FakeLLM({ADVISOR: Timeout("xAI LLM", "slow")})
        with pytest.raises(AnalysisFailed):
            _analyzer(llm).legal_insights("context")

    def test_insights_text(self):
        llm = FakeLLM({ADVISOR: "Key issues: ..."})
        assert _analyzer(llm).legal_insights("a contract was breached") == "Key issues: ..."
        assert "a contract was breached" in llm.calls[0]["prompt"]


def test_lawyer_directory_error_does_not_fail_analysis():
    directory = MagicMock()
    directory.find_verified.side_effect = RuntimeError("db down")
    llm = FakeLLM({CLASSIFIER: "Criminal", SEARCH: "query one", ADVISOR: BREACH_OF_TRUST_ANALYSIS})

    result = _analyzer(llm, lawyers=directory).analyze("funds kept")

    assert result.recommended_lawyers == []
