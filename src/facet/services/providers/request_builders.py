"""Provider request body builders.

Each registry entry names a builder tag; the builder owns which fields it
populates. Model-specific shaping lives here rather than in endpoint matching.
"""

import copy
from typing import Any, Callable, Optional

from facet.services.exceptions import PermanentError

FLUX_DEFAULT_PROMPT = "Enhance this jewelry image for professional e-commerce presentation."
GPT4O_DEFAULT_PROMPT = "Enhance this jewelry image."
GHIBLI_PREFIX = "Transform into Studio Ghibli anime style. "
DEFAULT_ASPECT_RATIO = "1:1"


def _aspect_ratio(job) -> str:
    return (getattr(job, "settings", None) or {}).get("aspect_ratio") or DEFAULT_ASPECT_RATIO


def _market_input(template: dict[str, Any]) -> dict[str, Any]:
    return dict(template.get("input") or {})


def build_flux_kontext(body: dict[str, Any], job) -> dict[str, Any]:
    body["prompt"] = job.prompt or FLUX_DEFAULT_PROMPT
    body["inputImage"] = job.input_url
    body["aspectRatio"] = _aspect_ratio(job)
    return body


def build_gpt4o_image(body: dict[str, Any], job) -> dict[str, Any]:
    body["prompt"] = job.prompt or GPT4O_DEFAULT_PROMPT
    body["inputImage"] = job.input_url
    return body


def build_market_image_urls(body: dict[str, Any], job) -> dict[str, Any]:
    """nano-banana style: ``image_urls`` plus ``image_size``."""
    market_input = _market_input(body)
    market_input["prompt"] = job.prompt
    market_input["image_urls"] = [job.input_url]
    market_input["image_size"] = _aspect_ratio(job)
    body["input"] = market_input
    return body


def build_market_single(body: dict[str, Any], job) -> dict[str, Any]:
    market_input = _market_input(body)
    market_input["prompt"] = job.prompt
    market_input["image_input"] = [job.input_url]
    market_input["aspect_ratio"] = _aspect_ratio(job)
    body["input"] = market_input
    return body


def build_market_edit(body: dict[str, Any], job) -> dict[str, Any]:
    """Two-image edit (combination jobs); a second image is optional."""
    market_input = _market_input(body)
    market_input["prompt"] = job.prompt
    images = [job.input_url]
    if job.input_url_2:
        images.append(job.input_url_2)
    market_input["image_input"] = images
    market_input["aspect_ratio"] = _aspect_ratio(job)
    body["input"] = market_input
    return body


def build_market_ghibli(body: dict[str, Any], job) -> dict[str, Any]:
    market_input = _market_input(body)
    market_input["prompt"] = f"{GHIBLI_PREFIX}{job.prompt or ''}"
    market_input["image_input"] = [job.input_url]
    market_input["aspect_ratio"] = _aspect_ratio(job)
    body["input"] = market_input
    return body


REQUEST_BUILDERS: dict[str, Callable[[dict[str, Any], Any], dict[str, Any]]] = {
    "flux_kontext": build_flux_kontext,
    "gpt4o_image": build_gpt4o_image,
    "market_image_urls": build_market_image_urls,
    "market_single": build_market_single,
    "market_edit": build_market_edit,
    "market_ghibli": build_market_ghibli,
}


def build_callback_url(callback_base_url: str, callback_token: str) -> str:
    return f"{callback_base_url}?token={callback_token}"


def build_request(config, job, callback_url: Optional[str] = None) -> dict[str, Any]:
    """Build the provider submit body for a job from its stored fields.

    The registry template is deep-copied first, so builders never mutate a
    shared entry.

    Args:
        config: Registry entry (ModelConfig) for the job's model
        job: AIJob (or any object with ai_model/prompt/input_url/input_url_2/settings)
        callback_url: Webhook URL for providers that call back on completion

    Returns:
        JSON-serializable request body

    Raises:
        PermanentError: If the entry names an unknown builder tag
    """
    builder = REQUEST_BUILDERS.get(config.request_builder)
    if builder is None:
        raise PermanentError(f"Unknown request builder: {config.request_builder}")

    body = copy.deepcopy(config.request_template or {})
    if callback_url and config.supports_callback:
        body["callbackUrl"] = callback_url
    return builder(body, job)


def sent_prompt(body: dict[str, Any]) -> Optional[str]:
    """Prompt as it appears in a built body (builders may add defaults or prefixes)."""
    prompt = body.get("prompt")
    if prompt is None and isinstance(body.get("input"), dict):
        prompt = body["input"].get("prompt")
    return prompt if isinstance(prompt, str) else None
