"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Histogram, Info,
                               generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY, CollectorRegistry

from intakeflow import __version__
from intakeflow.core.config import get_settings

# Multiprocess mode collects from the shared directory into a fresh registry
if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    EXPORT_REGISTRY = CollectorRegistry()
    MultiProcessCollector(EXPORT_REGISTRY)
else:
    EXPORT_REGISTRY = REGISTRY

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

# ============================================================================
# Intake Pipeline Metrics
# ============================================================================

intake_requests_total = Counter(
    'intake_requests_total',
    'Total number of intake pipeline runs',
    ['kind', 'outcome']  # outcome: normal, degraded, fallback
)

intake_pipeline_duration_seconds = Histogram(
    'intake_pipeline_duration_seconds',
    'Intake pipeline run duration in seconds',
    ['kind'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

intake_stage_degradations_total = Counter(
    'intake_stage_degradations_total',
    'Pipeline stages that fell back to their documented defaults',
    ['stage']
)

# ============================================================================
# Outbound Call Metrics
# ============================================================================

collaborator_requests_total = Counter(
    'collaborator_requests_total',
    'Calls to external collaborators',
    ['collaborator', 'status']
)

llm_requests_total = Counter(
    'llm_requests_total',
    'Total number of AI backend requests',
    ['model', 'status']
)

llm_request_duration_seconds = Histogram(
    'llm_request_duration_seconds',
    'AI backend request duration in seconds',
    ['model'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'app_info',
    'Application information'
)

_settings = get_settings()
app_info.info({
    'app_name': _settings.app_name,
    'app_env': _settings.app_env,
    'version': __version__,
})


def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(EXPORT_REGISTRY)


def get_metrics_content_type():
    """Get content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST
