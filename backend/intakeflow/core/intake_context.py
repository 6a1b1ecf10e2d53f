"""
Intake Context - immutable configuration handed to every pipeline component
"""
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from intakeflow.core.config import Settings, get_settings


class IntakeContext(BaseModel):
    """
    Explicit, frozen configuration for one pipeline instance.

    Components receive this in their constructor instead of reading
    settings or environment variables on their own.
    """

    model_config = ConfigDict(frozen=True)

    minting_service_url: str = "http://localhost:8101"
    minting_token: Optional[str] = None
    trust_authority_url: str = "http://localhost:8102"
    trust_authority_token: Optional[str] = None
    thread_sync_url: str = "http://localhost:8103"
    thread_sync_token: Optional[str] = None
    collaborator_timeout: float = Field(default=5.0, gt=0)

    trust_threshold: float = 50.0
    trust_content_limit: int = 2000
    classifier_content_limit: int = 4000
    audit_content_limit: int = 500
    audit_retain_raw: bool = False

    quarantine_route: str = "quarantine"
    default_route: str = "intake"
    auto_response_categories: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "IntakeContext":
        settings = settings or get_settings()
        return cls(
            minting_service_url=settings.minting_service_url,
            minting_token=settings.minting_token,
            trust_authority_url=settings.trust_authority_url,
            trust_authority_token=settings.trust_authority_token,
            thread_sync_url=settings.thread_sync_url,
            thread_sync_token=settings.thread_sync_token,
            collaborator_timeout=settings.collaborator_timeout_seconds,
            trust_threshold=settings.trust_threshold,
            trust_content_limit=settings.trust_content_limit,
            classifier_content_limit=settings.classifier_content_limit,
            audit_content_limit=settings.audit_content_limit,
            audit_retain_raw=settings.audit_retain_raw,
            quarantine_route=settings.quarantine_route,
            default_route=settings.default_route,
            auto_response_categories=tuple(settings.auto_response_categories_list),
        )
