"""
Prompt templates for classification, live-search query generation and
structured legal analysis.

Modules import prompts from here instead of defining them inline.
"""

CASE_CATEGORIES = [
    "Criminal",
    "Civil",
    "Corporate",
    "Family",
    "Property",
    "Intellectual Property",
    "Labour",
    "Constitutional",
    "Consumer",
    "Cyber Law",
]

DEFAULT_CASE_TYPE = "General"

LEGAL_SYSTEM_PROMPT = """You are an expert Indian legal advisor specializing in IPC, CrPC, and case law.
Your task is to analyze legal cases and provide:
1. Accurate IPC/Section identification.
2. Key legal arguments used in similar precedents.
3. Strategic advice for the lawyer/client.

Always cite relevant case law. Be precise, factual, and professional."""

CLASSIFIER_SYSTEM_PROMPT = "You are a legal classifier. Output only the category name."

CLASSIFY_PROMPT = """Analyze the following case description and classify it into exactly ONE of these categories:
[{categories}].

Case Description: "{description}"

Return ONLY the category name. Do not explain."""

SEARCH_QUERY_SYSTEM_PROMPT = "You are a legal search expert."

SEARCH_QUERY_PROMPT = """Generate {count} specific search queries for the Indian Kanoon legal database based on this case description.
Focus on key legal terms, IPC sections, and relevant acts.

Case Description: "{description}"

Return ONLY the {count} queries separated by a pipe character (|). Example: "Section 302 IPC murder precedent | culpable homicide not amounting to murder\""""

ANALYSIS_INSTRUCTIONS = """REQUIRED STRUCTURAL ANALYSIS:
1. **Applicable IPC Sections**: List specific sections with brief reasoning.
2. **Key Legal Arguments**: Extract potential arguments for both prosecution/plaintiff and defense based on the precedents.
3. **Strategic Roadmap**: Recommended legal steps.
4. **Risk Assessment**: (High/Medium/Low) with justification.
5. **Verdict Prediction**: Based on precedents.

Provide a comprehensive legal analysis."""

SOURCE_LABELS = {
    "local-vector": "Local Database",
    "live-external": "Live Indian Kanoon",
}


def build_classification_prompt(description: str) -> str:
    return CLASSIFY_PROMPT.format(
        categories=", ".join(CASE_CATEGORIES),
        description=description,
    )


def build_search_query_prompt(description: str, count: int = 2) -> str:
    return SEARCH_QUERY_PROMPT.format(count=count, description=description)


def build_precedent_context(matches) -> str:
    """Enumerated precedent block, in the order given."""
    if not matches:
        return ""

    lines = ["", "", "SIMILAR PRECEDENT CASES (Analyze these for arguments):"]
    for idx, match in enumerate(matches, start=1):
        source = SOURCE_LABELS.get(match.source.value, match.source.value)
        lines.append("")
        lines.append(f"{idx}. Case: {match.case_number or match.title}")
        lines.append(f"   Title: {match.title}")
        lines.append(f"   Source: {source}")
        lines.append(f"   Summary: {match.content or match.title}")
        lines.append(f"   Verdict: {match.verdict or 'Not specified'}")
    return "\n".join(lines)


def build_augmented_prompt(description: str, case_type: str, matches) -> str:
    """Case type, the client's description, retrieved context, and the required structure."""
    return f"""CASE TYPE: {case_type}

USER'S CASE DETAILS:
{description}
{build_precedent_context(matches)}

{ANALYSIS_INSTRUCTIONS}"""


def build_comparison_prompt(current_case: dict, precedents) -> str:
    listed = "\n".join(
        f"{idx}. {p.title} ({p.year}) - {p.verdict.value}"
        for idx, p in enumerate(precedents, start=1)
    )
    return f"""Compare the following current case with precedent cases and identify key similarities and differences:

CURRENT CASE:
Title: {current_case.get('title', '')}
Description: {current_case.get('description', '')}
Type: {current_case.get('case_type', DEFAULT_CASE_TYPE)}

PRECEDENT CASES:
{listed}

Provide detailed comparison highlighting:
1. Key similarities
2. Important differences
3. Impact on current case
4. Applicable precedents"""


def build_insights_prompt(context: str) -> str:
    return f"""Based on the following legal context, provide key insights and recommendations:

{context}

Provide:
1. Key legal issues
2. Applicable laws
3. Risk assessment
4. Recommended actions"""
