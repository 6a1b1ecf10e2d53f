"""
Attachment Analyzer component.

Role: Ask the AI adapter about each attachment of an envelope, one at a time.
A failure on one attachment is recorded on that item and never fails the batch.
"""

from __future__ import annotations

from typing import List, Optional

from intakeflow.components.classifier import coerce_text, extract_json_object
from intakeflow.components.contracts import (AttachmentAnalysis,
                                             AttachmentRef, AttachmentReport,
                                             AttachmentSummary,
                                             NormalizedEnvelope)
from intakeflow.components.prompt_repository import ComponentPromptRepository
from intakeflow.core.llm_client import AnalysisAdapter
from intakeflow.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

IMPORTANCE_ORDER = ("critical", "high", "normal")


def summarize(analyses: List[AttachmentAnalysis]) -> AttachmentSummary:
    categories: List[str] = []
    importances = set()
    for analysis in analyses:
        if analysis.category and analysis.category not in categories:
            categories.append(analysis.category)
        if analysis.importance:
            importances.add(analysis.importance)
    highest = next((level for level in IMPORTANCE_ORDER if level in importances), "normal")
    return AttachmentSummary(total_files=len(analyses), categories=categories, highest_importance=highest)


class AttachmentAnalyzer:
    component_name = "attachment_analyzer"
    prompt_name = "attachment_analysis"

    def __init__(self, adapter: AnalysisAdapter, prompt_repo: Optional[ComponentPromptRepository] = None):
        self.adapter = adapter
        self.prompt_repo = prompt_repo or ComponentPromptRepository()

    async def analyze_one(self, attachment: AttachmentRef) -> AttachmentAnalysis:
        prompt = "\n".join([
            f"Filename: {attachment.filename}",
            f"Size: {attachment.size if attachment.size is not None else 'unknown'} bytes",
            f"Type: {attachment.content_type or 'unknown'}",
        ])
        text = await self.adapter.analyze(prompt, system_prompt=self.prompt_repo.get_system_prompt(self.prompt_name))
        data = extract_json_object(text)
        if data is None:
            raise ValueError("analysis response contained no JSON object")
        importance = (coerce_text(data.get("importance")) or "normal").lower()
        return AttachmentAnalysis(
            filename=attachment.filename,
            analyzed=True,
            category=coerce_text(data.get("category")),
            importance=importance,
        )

    async def analyze(self, envelope: NormalizedEnvelope) -> AttachmentReport:
        if not envelope.attachments:
            return AttachmentReport(has_attachments=False)

        analyses = []
        for attachment in envelope.attachments:
            try:
                analyses.append(await self.analyze_one(attachment))
            except Exception as e:
                logger.warning(
                    f"Attachment analysis failed for {attachment.filename}: {e}",
                    extra={"attachment": attachment.filename, "error_type": type(e).__name__},
                )
                analyses.append(AttachmentAnalysis(filename=attachment.filename, analyzed=False, error=str(e)))

        return AttachmentReport(
            has_attachments=True,
            count=len(envelope.attachments),
            analyses=analyses,
            summary=summarize(analyses),
        )
