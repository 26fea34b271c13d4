"""Model registry - maps a model id to the provider protocol used to run it.

Built-in entries cover the Kie.ai models the product ships with. Rows in the
``ai_model_configs`` table override them (an inactive row removes a model), so
operators can retune endpoints, paths and predicates without a deploy.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

from facet.models.model_config import AIModelConfig
from facet.services.exceptions import UnknownModelError

logger = structlog.get_logger()

KIE_API_BASE = "https://api.kie.ai/api/v1"

FLUX_SUBMIT_ENDPOINT = f"{KIE_API_BASE}/flux/kontext/generate"
FLUX_STATUS_ENDPOINT = f"{KIE_API_BASE}/flux/kontext/record-info"
GPT4O_SUBMIT_ENDPOINT = f"{KIE_API_BASE}/gpt4o-image/generate"
GPT4O_STATUS_ENDPOINT = f"{KIE_API_BASE}/gpt4o-image/record-info"
MARKET_SUBMIT_ENDPOINT = f"{KIE_API_BASE}/jobs/createTask"
MARKET_STATUS_ENDPOINT = f"{KIE_API_BASE}/jobs/recordInfo"

DEFAULT_MAX_PROCESSING_TIME_SEC = 600

# successFlag: 0 generating, 1 success, 2 create failed, 3 generate failed
_FLAG_SUCCESS = {"path": "data.successFlag", "value": 1}
_FLAG_FAILURE = {"path": "data.successFlag", "values": [2, 3]}
_STATE_SUCCESS = {"path": "data.state", "value": "success"}
_STATE_FAILURE = {"path": "data.state", "value": "fail"}

_MARKET_RESULT_PATHS = ["data.resultJson", "data.output.images.0", "data.response.images.0"]


@dataclass(frozen=True)
class ModelConfig:
    """Immutable registry entry for one model id."""

    id: str
    submit_endpoint: str
    status_endpoint: str
    request_builder: str
    provider: str = "kie"
    request_template: dict[str, Any] = field(default_factory=dict)
    task_id_path: Optional[Any] = None
    result_url_paths: list[Any] = field(default_factory=list)
    success_check: Optional[dict] = None
    failure_check: Optional[dict] = None
    max_processing_time_sec: int = DEFAULT_MAX_PROCESSING_TIME_SEC
    token_cost: int = 1
    supports_callback: bool = True

    @classmethod
    def from_row(cls, row: AIModelConfig) -> "ModelConfig":
        return cls(
            id=row.id,
            provider=row.provider,
            submit_endpoint=row.submit_endpoint,
            status_endpoint=row.status_endpoint,
            request_builder=row.request_builder,
            request_template=dict(row.request_template or {}),
            task_id_path=row.task_id_path or None,
            result_url_paths=list(row.result_url_paths or []),
            success_check=row.success_check,
            failure_check=row.failure_check,
            max_processing_time_sec=row.max_processing_time_sec or DEFAULT_MAX_PROCESSING_TIME_SEC,
            token_cost=row.token_cost,
            supports_callback=row.supports_callback,
        )


BUILTIN_MODELS: tuple[ModelConfig, ...] = (
    ModelConfig(
        id="flux-kontext-pro",
        submit_endpoint=FLUX_SUBMIT_ENDPOINT,
        status_endpoint=FLUX_STATUS_ENDPOINT,
        request_builder="flux_kontext",
        request_template={"model": "flux-kontext-pro", "outputFormat": "png"},
        result_url_paths=["data.response.resultImageUrl"],
        success_check=_FLAG_SUCCESS,
        failure_check=_FLAG_FAILURE,
        token_cost=2,
    ),
    ModelConfig(
        id="flux-kontext-max",
        submit_endpoint=FLUX_SUBMIT_ENDPOINT,
        status_endpoint=FLUX_STATUS_ENDPOINT,
        request_builder="flux_kontext",
        request_template={"model": "flux-kontext-max", "outputFormat": "png"},
        result_url_paths=["data.response.resultImageUrl"],
        success_check=_FLAG_SUCCESS,
        failure_check=_FLAG_FAILURE,
        token_cost=3,
    ),
    ModelConfig(
        id="gpt-4o-image",
        submit_endpoint=GPT4O_SUBMIT_ENDPOINT,
        status_endpoint=GPT4O_STATUS_ENDPOINT,
        request_builder="gpt4o_image",
        request_template={"size": "1:1"},
        result_url_paths=["data.response.resultUrls.0"],
        success_check=_FLAG_SUCCESS,
        failure_check=_FLAG_FAILURE,
        max_processing_time_sec=900,
        token_cost=4,
    ),
    ModelConfig(
        id="nano-banana",
        submit_endpoint=MARKET_SUBMIT_ENDPOINT,
        status_endpoint=MARKET_STATUS_ENDPOINT,
        request_builder="market_image_urls",
        request_template={"model": "google/nano-banana-edit", "input": {"output_format": "png"}},
        result_url_paths=_MARKET_RESULT_PATHS,
        success_check=_STATE_SUCCESS,
        failure_check=_STATE_FAILURE,
        token_cost=1,
    ),
    ModelConfig(
        id="nano-banana-pro",
        submit_endpoint=MARKET_SUBMIT_ENDPOINT,
        status_endpoint=MARKET_STATUS_ENDPOINT,
        request_builder="market_single",
        request_template={"model": "nano-banana-pro", "input": {"resolution": "2K"}},
        result_url_paths=_MARKET_RESULT_PATHS,
        success_check=_STATE_SUCCESS,
        failure_check=_STATE_FAILURE,
        token_cost=2,
    ),
    ModelConfig(
        id="ghibli",
        submit_endpoint=MARKET_SUBMIT_ENDPOINT,
        status_endpoint=MARKET_STATUS_ENDPOINT,
        request_builder="market_ghibli",
        request_template={"model": "nano-banana-pro", "input": {}},
        result_url_paths=_MARKET_RESULT_PATHS,
        success_check=_STATE_SUCCESS,
        failure_check=_STATE_FAILURE,
        token_cost=2,
    ),
    ModelConfig(
        id="seedream-v4-edit",
        submit_endpoint=MARKET_SUBMIT_ENDPOINT,
        status_endpoint=MARKET_STATUS_ENDPOINT,
        request_builder="market_edit",
        request_template={"model": "bytedance/seedream-v4-edit", "input": {}},
        result_url_paths=_MARKET_RESULT_PATHS,
        success_check=_STATE_SUCCESS,
        failure_check=_STATE_FAILURE,
        token_cost=3,
    ),
)


class ModelRegistry:
    """Pure lookup over registry entries. Loaded once per reconcile or submit run."""

    def __init__(self, configs: Iterable[ModelConfig] = ()):
        self._configs: dict[str, ModelConfig] = {config.id: config for config in configs}

    @classmethod
    def default(cls) -> "ModelRegistry":
        return cls(BUILTIN_MODELS)

    @classmethod
    def from_rows(cls, rows: Iterable[AIModelConfig]) -> "ModelRegistry":
        """Overlay database rows on the built-in entries.

        Active rows replace the built-in entry with the same id (or add a new model);
        inactive rows remove the model entirely.
        """
        configs = {config.id: config for config in BUILTIN_MODELS}
        for row in rows:
            if row.is_active:
                configs[row.id] = ModelConfig.from_row(row)
            else:
                configs.pop(row.id, None)
        return cls(configs.values())

    def get(self, model_id: str | None) -> ModelConfig | None:
        if not model_id:
            return None
        return self._configs.get(model_id)

    def require(self, model_id: str | None) -> ModelConfig:
        """Look up a model, raising UnknownModelError when it is missing or inactive."""
        config = self.get(model_id)
        if config is None:
            raise UnknownModelError(model_id or "")
        return config

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._configs

    @property
    def model_ids(self) -> list[str]:
        return sorted(self._configs)


async def load_registry(uow) -> ModelRegistry:
    """Build the registry from built-in entries plus ``ai_model_configs`` overrides.

    Args:
        uow: Open UnitOfWork

    Returns:
        ModelRegistry snapshot for the current run
    """
    rows = await uow.model_configs.list_all()
    registry = ModelRegistry.from_rows(rows)
    logger.debug("registry.loaded", overrides=len(rows), models=len(registry.model_ids))
    return registry
