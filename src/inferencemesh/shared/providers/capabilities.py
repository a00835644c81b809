"""Capability defaults, models-endpoint parsing, cost tiers and display names."""

from __future__ import annotations

import re
from typing import Any

from inferencemesh.domain.entities import (
    FeatureSet,
    ProviderCapabilities,
    ProviderLimits,
    ProviderPricing,
)
from inferencemesh.domain.enums import Capability, CostTier

_DISPLAY_NAMES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "cohere": "Cohere",
    "huggingface": "Hugging Face",
    "azure": "Azure OpenAI",
    "aws": "AWS Bedrock",
}

_CAPABILITY_ALIASES: dict[str, Capability] = {
    "tools": Capability.FUNCTION_CALLING,
    "tool_use": Capability.FUNCTION_CALLING,
    "function_call": Capability.FUNCTION_CALLING,
    "code": Capability.CODE_GENERATION,
    "image": Capability.VISION,
    "images": Capability.VISION,
}

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def minimal_capabilities() -> ProviderCapabilities:
    """Used when capability detection is disabled."""
    return ProviderCapabilities()


def detected_defaults() -> ProviderCapabilities:
    """Baseline assumed for a provider that answers health checks."""
    return ProviderCapabilities(
        supported_models=[],
        features=FeatureSet(streaming=True, code_generation=True, reasoning=True),
        limits=ProviderLimits(
            max_tokens=128_000,
            max_requests_per_minute=100,
            max_requests_per_day=10_000,
            context_window=128_000,
        ),
        pricing=ProviderPricing(input_token_cost=0.00015, output_token_cost=0.0006),
    )


def normalise_capability(raw: Any) -> Capability | None:
    """Map an upstream capability label onto ``Capability``."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    name = _CAMEL.sub("_", raw.strip()).lower().replace("-", "_").replace(" ", "_")
    if name in _CAPABILITY_ALIASES:
        return _CAPABILITY_ALIASES[name]
    for member in Capability:
        if member.value == name:
            return member
    return None


def _model_entries(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("data") or payload.get("models") or []
    if not isinstance(payload, list):
        return []
    return [m for m in payload if isinstance(m, dict)]


def _as_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def capabilities_from_models(payload: Any) -> ProviderCapabilities:
    """Build capabilities from a models-endpoint response.

    Accepts ``{"data": [...]}`` or a bare list.  Anything not advertised
    keeps the detected defaults.
    """
    caps = detected_defaults()
    models: list[str] = []
    context_windows: list[int] = []
    input_costs: list[float] = []
    output_costs: list[float] = []

    for entry in _model_entries(payload):
        model_id = entry.get("id") or entry.get("model_id") or entry.get("name")
        if isinstance(model_id, str) and model_id not in models:
            models.append(model_id)

        raw_caps = entry.get("capabilities") or []
        if isinstance(raw_caps, dict):
            raw_caps = [k for k, enabled in raw_caps.items() if enabled]
        elif isinstance(raw_caps, str):
            raw_caps = [raw_caps]
        for raw in raw_caps:
            cap = normalise_capability(raw)
            if cap is not None:
                setattr(caps.features, cap.value, True)

        window = _as_int(entry.get("context_length") or entry.get("context_window"))
        if window:
            context_windows.append(window)

        pricing = entry.get("pricing")
        if isinstance(pricing, dict):
            try:
                cost_in = float(pricing.get("input", pricing.get("prompt")))
                cost_out = float(pricing.get("output", pricing.get("completion")))
            except (TypeError, ValueError):
                continue
            input_costs.append(cost_in)
            output_costs.append(cost_out)

    caps.supported_models = models
    if context_windows:
        caps.limits.context_window = max(context_windows)
        caps.limits.max_tokens = max(context_windows)
    if input_costs and output_costs:
        caps.pricing = ProviderPricing(
            input_token_cost=sum(input_costs) / len(input_costs),
            output_token_cost=sum(output_costs) / len(output_costs),
        )
    return caps


def determine_cost_tier(capabilities: ProviderCapabilities) -> CostTier:
    avg = capabilities.pricing.average_cost
    if avg < 0.00005:
        return CostTier.BUDGET
    if avg < 0.0002:
        return CostTier.STANDARD
    return CostTier.PREMIUM


def display_name(provider_id: str) -> str:
    if provider_id in _DISPLAY_NAMES:
        return _DISPLAY_NAMES[provider_id]
    return provider_id[:1].upper() + provider_id[1:]
