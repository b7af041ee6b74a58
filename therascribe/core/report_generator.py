"""
Clinical Report Generator for TheraScribe
=========================================

This module converts therapy session transcripts into structured clinical
notes (SOAP, BIRP, DAP or free-form "Scribbled Notes") using an LLM through
LangChain.

Architecture Pattern: Service with Strategy
-------------------------------------------
The generator is designed to:
1. Accept different LLM backends (Ollama by default, any LangChain LLM in tests)
2. Use one prompt skeleton for every report format
3. Parse the LLM's JSON output into a validated ClinicalReport

Parsing is strict: the model is asked for an exact JSON shape and anything
else is a MalformedGenerationError. The only soft failure is an empty
answer, which yields a "not generated" report instead of an error.
"""

import json
import logging
import re
from typing import Optional, Protocol, Union

from langchain_core.output_parsers import StrOutputParser
from langchain_ollama import OllamaLLM

from therascribe.config import Settings, get_settings
from therascribe.exceptions import (
    MalformedGenerationError,
    RemoteServiceError,
    TheraScribeError,
    ValidationError,
)
from therascribe.models import REPORT_SECTIONS, ClinicalReport, ReportFormat
from therascribe.prompts import get_report_prompt_template, get_report_prompt_variables


logger = logging.getLogger(__name__)


SERVICE_NAME = "generation"

# Sentinel some backends return instead of an empty body
NO_REPORT_SENTINEL = "No report generated."

_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


class ReportGeneratorProtocol(Protocol):
    """
    Protocol for clinical report generators.

    This allows us to swap implementations:
    - OllamaReportGenerator: Local LLM
    - MockReportGenerator: Testing
    """

    def generate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        ...

    async def agenerate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        ...


def resolve_report_format(
    report_format: Union[ReportFormat, str, None],
    settings: Optional[Settings] = None
) -> ReportFormat:
    """
    Turn a caller-supplied format (or None) into a ReportFormat.

    Raises:
        ValidationError: If the name is not a known format
    """
    if report_format is None:
        report_format = (settings or get_settings()).default_report_format
    if isinstance(report_format, ReportFormat):
        return report_format
    try:
        return ReportFormat(report_format)
    except ValueError:
        raise ValidationError(
            f"unknown report format: {report_format!r}",
            supported=[f.value for f in ReportFormat],
        )


class OllamaReportGenerator:
    """
    Clinical report generator using an Ollama LLM.

    Key Design Decisions:
    ---------------------
    1. Lazy initialization: LLM connection only when needed
    2. One chain shape for every format: prompt | llm | StrOutputParser()
    3. Strict JSON parsing into ClinicalReport
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Optional[OllamaLLM] = None
    ):
        """
        Initialize the report generator.

        Args:
            settings: Library settings (uses defaults if not provided)
            llm: Pre-configured LLM instance (creates one if not provided).
                 Any LangChain LLM works, which is how tests inject a fake.
        """
        self.settings = settings or get_settings()
        self._llm = llm

        logger.info(
            f"OllamaReportGenerator initialized with model: {self.settings.ollama_model}"
        )

    @property
    def llm(self) -> OllamaLLM:
        """Lazy-load the LLM instance."""
        if self._llm is None:
            self._llm = self._create_llm()
        return self._llm

    def _create_llm(self) -> OllamaLLM:
        logger.info(
            f"Initializing Ollama LLM: {self.settings.ollama_model} "
            f"at {self.settings.ollama_base_url}"
        )
        client_kwargs = {"timeout": self.settings.generation_timeout}
        if self.settings.generation_api_key:
            client_kwargs["headers"] = {
                "Authorization": f"Bearer {self.settings.generation_api_key}"
            }
        return OllamaLLM(
            model=self.settings.ollama_model,
            base_url=self.settings.ollama_base_url,
            temperature=self.settings.generation_temperature,
            top_k=self.settings.generation_top_k,
            top_p=self.settings.generation_top_p,
            num_predict=self.settings.generation_max_output_tokens,
            client_kwargs=client_kwargs,
        )

    def _build_chain(self):
        # Chain pattern: prompt -> llm -> output_parser
        return get_report_prompt_template() | self.llm | StrOutputParser()

    def _prepare(self, transcript: str, report_format) -> tuple[ReportFormat, dict]:
        if not transcript or not transcript.strip():
            raise ValidationError("cannot generate a report from an empty transcript")
        fmt = resolve_report_format(report_format, self.settings)
        logger.info(
            f"Generating {fmt.value} report for transcript ({len(transcript)} chars)"
        )
        return fmt, get_report_prompt_variables(transcript, fmt)

    def generate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        """
        Generate a clinical report from a transcript (synchronous).

        Raises:
            ValidationError: Empty transcript or unknown format
            RemoteServiceError: The LLM backend failed
            MalformedGenerationError: The output did not match the format
        """
        fmt, variables = self._prepare(transcript, report_format)
        try:
            raw_response = self._build_chain().invoke(variables)
        except TheraScribeError:
            raise
        except Exception as e:
            logger.error(f"Report generation failed: {e}")
            raise RemoteServiceError(service=SERVICE_NAME, message=str(e)) from e
        return self._to_report(raw_response, fmt)

    async def agenerate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        """
        Async version of generate() using LangChain's native ainvoke, so the
        event loop stays free while the model runs.
        """
        fmt, variables = self._prepare(transcript, report_format)
        try:
            logger.debug("Sending async request to the generation backend...")
            raw_response = await self._build_chain().ainvoke(variables)
        except TheraScribeError:
            raise
        except Exception as e:
            logger.error(f"Async report generation failed: {e}")
            raise RemoteServiceError(service=SERVICE_NAME, message=str(e)) from e
        return self._to_report(raw_response, fmt)

    def _to_report(self, raw_response: str, fmt: ReportFormat) -> ClinicalReport:
        logger.debug(f"Received response ({len(raw_response or '')} chars)")
        report = parse_report_response(raw_response, fmt)
        if report.generated:
            logger.info(f"{fmt.value} report generated successfully")
        return report


# =============================================================================
# Parsing
# =============================================================================

def parse_report_response(response: Optional[str], report_format: ReportFormat) -> ClinicalReport:
    """
    Parse raw model output into a ClinicalReport.

    Parsing Strategy:
    1. Blank output or the "No report generated." sentinel -> not_generated
    2. Strip whitespace and Markdown code fences
    3. Take the outermost {...} object and json.loads it
    4. Require exactly the format's keys, each a list of strings

    Raises:
        MalformedGenerationError: On any violation of steps 3-4
    """
    text = (response or "").strip()
    if not text or text == NO_REPORT_SENTINEL:
        logger.warning(f"Generation backend returned no {report_format.value} content")
        return ClinicalReport.not_generated(report_format)

    text = _CODE_FENCE.sub("", text).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        raise MalformedGenerationError("no JSON object found in output", text)

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedGenerationError(f"invalid JSON: {e.msg}", text)
    if not isinstance(data, dict):
        raise MalformedGenerationError("top-level JSON value is not an object", text)

    required = REPORT_SECTIONS[report_format]
    missing = [key for key in required if key not in data]
    extra = sorted(key for key in data if key not in required)
    if missing or extra:
        raise MalformedGenerationError(
            f"{report_format.value} sections mismatch (missing: {missing}, extra: {extra})",
            text,
        )

    sections = {}
    for key in required:
        value = data[key]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise MalformedGenerationError(
                f"section '{key}' must be a list of strings", text
            )
        sections[key] = value

    return ClinicalReport(format=report_format, sections=sections)


def detect_report_format(content: Optional[dict]) -> Optional[ReportFormat]:
    """
    Recognise stored report content by its section keys.

    Keys are compared case-insensitively, so both {"Subjective": ...} and
    {"subjective": ...} are SOAP. Content that carries
    {"meta": {"requestedFormat": ...}} falls back to that format.

    Returns:
        The detected format, or None if nothing matches
    """
    if not content or not isinstance(content, dict):
        return None

    keys = {str(key).lower() for key in content}
    for fmt in (ReportFormat.SOAP, ReportFormat.BIRP, ReportFormat.DAP, ReportFormat.SCRIBBLED_NOTES):
        if {key.lower() for key in REPORT_SECTIONS[fmt]} <= keys:
            return fmt

    meta = content.get("meta")
    if isinstance(meta, dict) and meta.get("requestedFormat"):
        try:
            return ReportFormat(meta["requestedFormat"])
        except ValueError:
            logger.debug(f"Unknown requested format in metadata: {meta['requestedFormat']!r}")
    return None


# =============================================================================
# Mock Implementation
# =============================================================================

class MockReportGenerator:
    """
    Mock report generator for testing.

    Returns a small fixed report for whichever format is requested, or
    raises the configured error.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        error: Optional[Exception] = None,
        generated: bool = True,
    ):
        self.settings = settings or get_settings()
        self.error = error
        self.generated = generated
        self.calls: list[tuple[str, ReportFormat]] = []

    def generate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        if not transcript or not transcript.strip():
            raise ValidationError("cannot generate a report from an empty transcript")
        fmt = resolve_report_format(report_format, self.settings)
        self.calls.append((transcript, fmt))
        if self.error is not None:
            raise self.error
        if not self.generated:
            return ClinicalReport.not_generated(fmt)

        summary = transcript.strip().splitlines()[0][:120]
        sections = {key: [] for key in REPORT_SECTIONS[fmt]}
        sections[REPORT_SECTIONS[fmt][0]] = [summary]
        return ClinicalReport(format=fmt, sections=sections)

    async def agenerate(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        return self.generate(transcript, report_format)


# =============================================================================
# Factory Function
# =============================================================================

def create_report_generator(
    settings: Optional[Settings] = None,
    use_mock: bool = False
) -> ReportGeneratorProtocol:
    """
    Factory function to create the appropriate report generator.

    Args:
        settings: Library settings
        use_mock: If True, returns mock generator (for testing)

    Returns:
        Report generator instance
    """
    if use_mock:
        logger.info("Creating mock report generator")
        return MockReportGenerator(settings=settings)

    logger.info("Creating Ollama report generator")
    return OllamaReportGenerator(settings=settings)
