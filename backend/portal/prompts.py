from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping

from portal.db import PROPOSAL_JSON_FIELDS, PROPOSAL_TEXT_FIELDS
from portal.novelty import NoveltyResult


@dataclass(frozen=True)
class ChecklistItem:
    key: str
    title: str
    question: str


@dataclass(frozen=True)
class ChecklistCategory:
    key: str
    title: str
    items: tuple[ChecklistItem, ...]


EVALUATION_CHECKLIST: tuple[ChecklistCategory, ...] = (
    ChecklistCategory(
        key="structural_compliance",
        title="1. Detailed Reading & Structural Compliance",
        items=(
            ChecklistItem(
                "structural_adherence",
                "1.1 Structural Adherence",
                "Does the proposal follow a standard proforma structure with all key headings?",
            ),
            ChecklistItem(
                "conciseness",
                "1.2 Conciseness and Word Limits",
                "Is the language concise and does it appear to respect word limits?",
            ),
            ChecklistItem(
                "smart_objectives",
                "1.3 SMART Objectives",
                "Are the objectives Specific, Measurable, Achievable, Relevant and Time-bound?",
            ),
            ChecklistItem(
                "work_plan_timeline",
                "1.4 Work Plan Visualization",
                "Is there a structured timeline provided?",
            ),
            ChecklistItem(
                "annexure_completeness",
                "1.5 Completeness of Annexures",
                "Is the investigator CV section fully filled out?",
            ),
        ),
    ),
    ChecklistCategory(
        key="financial_assessment",
        title="2. Financial Assessment",
        items=(
            ChecklistItem(
                "budget_justification",
                "2.1 Budgetary Justification",
                "Is there a clear justification for the budget?",
            ),
            ChecklistItem(
                "cost_reasonableness",
                "2.2 Cost Reasonableness",
                "Does the proposal provide a basis for the cost estimates?",
            ),
            ChecklistItem(
                "funding_norms",
                "2.3 Compliance with Funding Norms",
                "Does the budget mention or imply adherence to norms like cost-sharing?",
            ),
            ChecklistItem(
                "industry_alignment",
                "2.4 Alignment with Industry Benefit",
                "Does the financial plan seem geared towards a commercial application?",
            ),
        ),
    ),
    ChecklistCategory(
        key="technical_feasibility",
        title="3. Technical Feasibility",
        items=(
            ChecklistItem(
                "methodology_coherence",
                "3.1 Methodology and Work Plan Coherence",
                "Is the methodology clear, sound, and logically linked to the objectives?",
            ),
            ChecklistItem(
                "achievability",
                "3.2 Achievability and Risk Assessment",
                "Does the plan seem realistic and achievable?",
            ),
            ChecklistItem(
                "team_expertise",
                "3.3 Team Expertise and Institutional Capacity",
                "Based on the CV details, does the team appear to have the necessary expertise?",
            ),
            ChecklistItem(
                "industry_benefit",
                "3.4 Benefit to Industry",
                "Is the value proposition to the industry clearly and compellingly articulated?",
            ),
        ),
    ),
    ChecklistCategory(
        key="novelty_innovation",
        title="4. Novelty & Innovation",
        items=(
            ChecklistItem(
                "literature_survey",
                "4.1 Literature Survey Thoroughness",
                "Does the proposal include a comprehensive literature survey?",
            ),
            ChecklistItem(
                "research_gap",
                "4.2 Identification of Research Gap",
                "Does the proposal clearly define a specific research gap?",
            ),
            ChecklistItem(
                "novelty_articulation",
                "4.3 Articulation of Novelty",
                "Based on 'rd_components' and 'novelty_check_result', is the novelty clearly described "
                "and does it pinpoint a unique selling proposition?",
            ),
            ChecklistItem(
                "advancement",
                "4.4 Advancement Beyond Existing Solutions",
                "Does the proposal show how it advances the field beyond current practice, "
                "especially considering the most similar past project found?",
            ),
        ),
    ),
)

SYSTEM_PROMPT = (
    "You are an expert auto-evaluation system for R&D proposals. "
    "Return strict JSON only. Do not include markdown or prose."
)


def checklist_item_titles() -> dict[tuple[str, str], str]:
    return {
        (category.key, item.key): item.title
        for category in EVALUATION_CHECKLIST
        for item in category.items
    }


def _prompt_fields(proposal: Mapping[str, object]) -> dict[str, object]:
    return {name: proposal.get(name) for name in (*PROPOSAL_TEXT_FIELDS, *PROPOSAL_JSON_FIELDS)}


def _render_checklist() -> str:
    lines: list[str] = []
    for category in EVALUATION_CHECKLIST:
        lines.append(f"### {category.title} (key: {category.key})")
        for item in category.items:
            lines.append(f"- **{item.title}** (key: {item.key}): {item.question}")
        lines.append("")
    return "\n".join(lines).rstrip()


def _render_output_skeleton() -> str:
    skeleton = {
        category.key: {
            item.key: {"covered": "<true|false>", "justification": "<one sentence>"} for item in category.items
        }
        for category in EVALUATION_CHECKLIST
    }
    return json.dumps(skeleton, indent=2)


def build_evaluation_prompt(proposal: Mapping[str, object], novelty: NoveltyResult) -> str:
    """Serialize a proposal and its novelty check into the checklist evaluation prompt.

    Only applicant-authored fields are included; scores, review history and
    other system fields never reach the model. Output is stable for a given
    input so prompts can be compared across runs.
    """
    enriched = {
        **_prompt_fields(proposal),
        "novelty_check_result": novelty.to_dict(),
    }
    proposal_json = json.dumps(enriched, indent=2, sort_keys=True, ensure_ascii=True, default=str)

    return (
        "Evaluate the following research proposal against a strict checklist.\n\n"
        f"Proposal data (JSON):\n{proposal_json}\n\n"
        "Instructions:\n"
        "For the Novelty & Innovation category, pay close attention to the 'novelty_check_result' field. "
        "For each checklist item you MUST provide:\n"
        '1. "covered": a boolean value (true/false).\n'
        '2. "justification": a brief, one-sentence explanation based ONLY on the provided proposal data.\n\n'
        "--- CHECKLIST START ---\n"
        f"{_render_checklist()}\n"
        "--- CHECKLIST END ---\n\n"
        "Output instruction:\n"
        "Your entire response MUST be a single valid JSON object keyed by category key, then item key, "
        "with exactly this shape:\n"
        f"{_render_output_skeleton()}\n"
        "Do not include any text, notes, or markdown before or after the JSON."
    )
