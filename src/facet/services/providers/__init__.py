"""AI provider integration: registry, request shaping, HTTP client and result extraction."""

from facet.services.providers.kie_client import KieClient, SubmitResult
from facet.services.providers.registry import ModelConfig, ModelRegistry, load_registry
from facet.services.providers.request_builders import build_callback_url, build_request, sent_prompt
from facet.services.providers.result_extractor import Failed, Pending, Success, classify

__all__ = [
    "KieClient",
    "SubmitResult",
    "ModelConfig",
    "ModelRegistry",
    "load_registry",
    "build_request",
    "build_callback_url",
    "sent_prompt",
    "classify",
    "Pending",
    "Success",
    "Failed",
]
