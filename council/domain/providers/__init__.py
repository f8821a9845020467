from .ai_provider import AIProvider, ProviderResponse
from .provider_factory import ProviderFactory
from .fanout import FanoutCallbacks, FanoutCollaborator
from .health_tracker import HealthDecision, HealthTracker
from .provider_limits import PROVIDER_LIMITS, ProviderLimit, ProviderLimits
from .error_classifier import ERROR_DISPLAY_TEXT, classify_error

__all__ = [
    "AIProvider",
    "ProviderResponse",
    "ProviderFactory",
    "FanoutCallbacks",
    "FanoutCollaborator",
    "HealthDecision",
    "HealthTracker",
    "PROVIDER_LIMITS",
    "ProviderLimit",
    "ProviderLimits",
    "ERROR_DISPLAY_TEXT",
    "classify_error",
]
