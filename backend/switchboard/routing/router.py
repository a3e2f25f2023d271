from typing import Any, Dict

from switchboard.core.config import Settings
from switchboard.core.logging import get_logger
from switchboard.models.chat import ChatCompletionRequest
from switchboard.models.routing import ClassificationConfig, RouteResult
from switchboard.providers.catalog import ModelCatalog
from switchboard.routing.classifier import adjust_for_multimodal, classify

logger = get_logger(__name__)


def route_request(
    request: ChatCompletionRequest, settings: Settings, catalog: ModelCatalog
) -> RouteResult:
    """Pick the model and provider for a request.

    Without auto routing the caller's model is kept. With it, the classifier's
    suggestion (after the multimodal override) is used, and caller
    preferences for the detected intent take precedence over the defaults.
    """
    options = request.routing
    auto = options.auto_routing if options is not None else settings.enable_auto_routing
    if not auto:
        return RouteResult(model=request.model, provider=request.provider)

    threshold = settings.routing_confidence_threshold
    if options is not None and options.confidence_threshold is not None:
        threshold = options.confidence_threshold
    config = ClassificationConfig(mode=settings.routing_mode, confidence_threshold=threshold)

    classification = adjust_for_multimodal(
        classify(request.messages, config, catalog), request.messages, catalog
    )
    provider = classification.suggested_provider
    model = classification.suggested_model

    if options is not None:
        preferred = (options.provider_preferences or {}).get(classification.intent)
        if preferred and preferred != provider:
            default = catalog.default_model(preferred)
            if default is not None:
                provider, model = preferred, default.id
        override = (options.model_overrides or {}).get(classification.intent)
        if override and catalog.provider_for(override):
            model, provider = override, catalog.provider_for(override)

    logger.info(
        "request_routed",
        intent=classification.intent.value,
        confidence=round(classification.confidence, 3),
        provider=provider,
        model=model,
    )
    return RouteResult(model=model, provider=provider, was_auto_routed=True, classification=classification)


def routing_payload(route: RouteResult) -> Dict[str, Any]:
    """Routing info attached to the ``start`` event."""
    payload: Dict[str, Any] = {
        "model": route.model,
        "was_auto_routed": route.was_auto_routed,
    }
    if route.provider:
        payload["provider"] = route.provider
    if route.classification is not None:
        payload["classification"] = route.classification.model_dump(mode="json")
    return payload
