"""
Pytest configuration and fixtures
"""
import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))
# Shared fakes live next to this file
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

# Settings are cached on first import, so the test environment goes in first
_tmp_dir = tempfile.mkdtemp(prefix="intakeflow-tests-")
os.environ.setdefault("ENABLE_TRACING", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUDIT_SINK", "memory")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp_dir}/audit.db")

from fakes import (FakeAdapter, FakeMinter, FakePromptRepository,  # noqa: E402
                   FakeThreadSync, FakeTrustAuthority)
from intakeflow.core.intake_context import IntakeContext  # noqa: E402
from intakeflow.services.audit_sink import InMemoryAuditSink  # noqa: E402
from intakeflow.services.intake_pipeline import IntakePipeline  # noqa: E402


@pytest.fixture
def intake_context() -> IntakeContext:
    return IntakeContext()


@pytest.fixture
def prompt_repo() -> FakePromptRepository:
    return FakePromptRepository()


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def trust_authority() -> FakeTrustAuthority:
    return FakeTrustAuthority()


@pytest.fixture
def minter() -> FakeMinter:
    return FakeMinter()


@pytest.fixture
def thread_sync() -> FakeThreadSync:
    return FakeThreadSync()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def make_pipeline(intake_context, adapter, trust_authority, minter, thread_sync, audit_sink, prompt_repo):
    """Pipeline wired to the fakes; keyword overrides replace single collaborators"""

    def _make(**overrides) -> IntakePipeline:
        kwargs = dict(
            context=intake_context,
            adapter=adapter,
            trust_authority=trust_authority,
            audit_sink=audit_sink,
            minter=minter,
            thread_sync=thread_sync,
            prompt_repo=prompt_repo,
        )
        kwargs.update(overrides)
        return IntakePipeline(**kwargs)

    return _make
