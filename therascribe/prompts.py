"""
Clinical Report Prompts for TheraScribe
=======================================

This module contains the prompts used to turn a therapy session transcript
into a structured clinical note.

Every format shares one prompt skeleton:

1. A mental-health-professional preamble with the transcript
2. Format-specific guidance and the exact JSON shape to return
3. A closing instruction to return strictly valid JSON

The JSON shapes are built from REPORT_SECTIONS so the keys the model is
asked for are always the keys the parser enforces.
"""

import json

from langchain_core.prompts import PromptTemplate

from therascribe.models import REPORT_SECTIONS, ReportFormat


# =============================================================================
# Section Descriptions - What belongs in each section
# =============================================================================

SECTION_DESCRIPTIONS: dict[ReportFormat, dict[str, str]] = {
    ReportFormat.SOAP: {
        "Subjective": "Client's statements, symptoms, and concerns",
        "Objective": "Observable behaviors, affect, presentation, test results",
        "Assessment": "Clinical analysis, identified patterns, diagnostic considerations",
        "Plan": "Treatment plans, interventions, follow-up actions",
    },
    ReportFormat.BIRP: {
        "Behavior": "Client's behaviors, statements, symptoms",
        "Intervention": "Therapeutic techniques used, counselor's actions",
        "Response": "Client's response to interventions",
        "Plan": "Future treatment plans, homework, goals",
    },
    ReportFormat.DAP: {
        "Data": "Objective and subjective observations",
        "Assessment": "Clinical interpretation and analysis",
        "Plan": "Treatment plans and next steps",
    },
    ReportFormat.SCRIBBLED_NOTES: {
        "observations": "Key observations and notable points",
        "keyPoints": "Important insights and patterns",
        "followUp": "Action items and follow-up plans",
    },
}


FORMAT_GUIDANCE: dict[ReportFormat, str] = {
    ReportFormat.SOAP: "Generate a SOAP note format report with the following structure:",
    ReportFormat.BIRP: "Generate a BIRP note format report with the following structure:",
    ReportFormat.DAP: "Generate a DAP note format report with the following structure:",
    ReportFormat.SCRIBBLED_NOTES: (
        "Generate a free-form clinical notes summary with the following structure:"
    ),
}


# =============================================================================
# Prompt Template
# =============================================================================

# Variables are substituted once and never re-parsed, so braces inside the
# transcript or the JSON shape are safe.
REPORT_PROMPT_TEMPLATE = """As a mental health professional, analyze the following therapy session transcription and generate a structured clinical report in {format_name} format. Format the response as a JSON object according to the specified format.

Transcription:
{transcript}

{guidance}
{shape}

Return ONLY strict, minimal JSON: a valid JSON object that strictly follows this structure. Every key must be present, even if its list is empty, and no other keys may be added. Each value must be a list of strings. Include only the most relevant and significant points in each section. Do not wrap the JSON in markdown or add any commentary."""


def get_report_shape(report_format: ReportFormat) -> str:
    """
    Return the JSON skeleton the model must fill for a format.

    Example (DAP):
        {
          "Data": ["Objective and subjective observations"],
          "Assessment": ["Clinical interpretation and analysis"],
          "Plan": ["Treatment plans and next steps"]
        }
    """
    descriptions = SECTION_DESCRIPTIONS[report_format]
    shape = {key: [descriptions[key]] for key in REPORT_SECTIONS[report_format]}
    return json.dumps(shape, indent=2)


def get_report_prompt_template() -> PromptTemplate:
    """The shared LangChain template for every report format."""
    return PromptTemplate.from_template(REPORT_PROMPT_TEMPLATE)


def get_report_prompt_variables(transcript: str, report_format: ReportFormat) -> dict:
    """Variables that fill REPORT_PROMPT_TEMPLATE for one request."""
    return {
        "format_name": report_format.value,
        "transcript": transcript,
        "guidance": FORMAT_GUIDANCE[report_format],
        "shape": get_report_shape(report_format),
    }


def build_report_prompt(transcript: str, report_format: ReportFormat) -> str:
    """
    Render the complete prompt text for a transcript and format.

    Useful for logging and for backends that take a raw string.
    """
    return get_report_prompt_template().format(
        **get_report_prompt_variables(transcript, report_format)
    )
