"""Text rendering of retrieved cases for prompts and the case search."""

from typing import Dict, List, Sequence

from ..data.corpus import CaseCorpus
from ..models.case import format_number
from ..models.types import RankedCase, ScoredCase

PROMPT_HEADER = "\n\n📋 RELEVANT CLINICAL CASES FROM YOUR DATABASE:\n\n"
PROMPT_FOOTER = "⚠️ Please reference these specific cases in your response when relevant.\n"
MAX_SEARCH_PEARLS = 3
MAX_SUMMARY_POINTS = 5


def _complication_line(complication: Dict[str, str]) -> str:
    line = complication.get("event", "")
    if complication.get("timing"):
        line += f" ({complication['timing']})"
    if complication.get("management"):
        line += f" - management: {complication['management']}"
    if complication.get("outcome"):
        line += f" - outcome: {complication['outcome']}"
    return line


def format_cases_for_prompt(cases: Sequence[RankedCase]) -> str:
    """
    Render ranked cases as a block for the language-model prompt.

    Output depends only on the cases and their order.

    Args:
        cases: Ranked case summaries

    Returns:
        Prompt text, or "" when there are no cases
    """
    if not cases:
        return ""

    prompt = PROMPT_HEADER
    for i, case in enumerate(cases, 1):
        asa = f"ASA {case.asa}" if case.asa is not None else "ASA unknown"
        prompt += f"**Case {i}**: {case.title} - {case.patient_age} ({asa})\n"
        prompt += f"Technique: {case.technique}\n"
        if case.critical_incident:
            prompt += "🚨 Critical incident\n"
        if case.complications:
            prompt += f"⚠️ Complications: {'; '.join(_complication_line(c) for c in case.complications)}\n"
        if case.clinical_pearls:
            prompt += f"💡 Clinical Pearls: {'; '.join(case.clinical_pearls)}\n"
        if case.key_takeaways:
            prompt += f"🔑 Key Takeaways: {'; '.join(case.key_takeaways)}\n"
        prompt += f"Relevance Score: {case.relevance_score * 100:.1f}%\n\n"

    prompt += PROMPT_FOOTER
    return prompt


def format_case_search_response(query: str, results: Sequence[ScoredCase], corpus: CaseCorpus) -> str:
    """
    Render the narrative answer of the case search.

    Args:
        query: User query
        results: Keyword-ranked cases
        corpus: Full corpus, summarised when nothing matched

    Returns:
        Markdown text
    """
    if not results:
        specialties = list(dict.fromkeys(c.procedure.specialty for c in corpus if c.procedure.specialty))
        with_complications = sum(1 for c in corpus if c.has_complications)
        critical = sum(1 for c in corpus if c.outcome.critical_incident)
        return (
            f'I couldn\'t find specific cases matching "{query}" in our database. '
            "However, I can provide general guidance. Our case library includes:\n\n"
            f"Specialties covered: {', '.join(specialties)}\n\n"
            f"Cases with complications: {with_complications}\n"
            f"Critical incidents: {critical}\n\n"
            "Try asking about specific complications, procedures, or patient populations."
        )

    response = f'I found {len(results)} relevant case(s) for "{query}":\n\n'
    for i, result in enumerate(results, 1):
        case = result.case
        procedure = case.procedure
        patient = " ".join(part for part in (case.age_short, case.patient.sex) if part)
        response += f"📋 **Case {i}**: {patient} - {procedure.name}\n"
        blood_loss = format_number(procedure.blood_loss) or "n/a"
        response += f"ASA {case.patient.asa} | {procedure.specialty} | Blood loss: {blood_loss}mL\n\n"

        if case.complications:
            response += "⚠️ **Complications**:\n"
            for comp in case.complications:
                response += f"• {comp.event}\n"
                response += f"  → Management: {comp.management}\n"
                response += f"  → Outcome: {comp.outcome}\n\n"

        if case.key_takeaways:
            response += "🔑 **Key Lessons**:\n"
            for takeaway in case.key_takeaways:
                response += f"• {takeaway}\n"
            response += "\n"

        if case.clinical_pearls:
            response += "💡 **Clinical Pearls**:\n"
            for pearl in case.clinical_pearls[:MAX_SEARCH_PEARLS]:
                response += f"• {pearl}\n"
            response += "\n"

        outcome = case.outcome
        if outcome.critical_incident:
            response += "🚨 **Critical Incident Details**:\n"
            if outcome.icu_days:
                response += f"• ICU stay: {format_number(outcome.icu_days)} days\n"
            if outcome.hospital_days:
                response += f"• Total hospital stay: {format_number(outcome.hospital_days)} days\n"
            if outcome.quality_score is not None:
                response += f"• Quality score: {format_number(outcome.quality_score)}/10\n"
            response += "\n"

        response += "---\n\n"

    response += "**Summary Recommendations Based on These Cases**:\n"
    points: List[str] = []
    for result in results:
        points.extend(result.case.clinical_pearls)
    for result in results:
        points.extend(result.case.key_takeaways)
    for point in list(dict.fromkeys(points))[:MAX_SUMMARY_POINTS]:
        response += f"• {point}\n"

    return response
