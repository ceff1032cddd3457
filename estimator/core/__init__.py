# Lazy imports to avoid triggering full dependency chain.
# This allows targeted imports like `from estimator.core.db.models import Base`
# without pulling in the LLM providers.

__all__ = [
    "MutationEngine",
    "ProjectManager",
    "EstimateService",
    "StreamingSession",
    "ConnectionManager",
    "LLMClient",
    "LLMGateway",
    "EstimatorModel",
    "TokenVerifier",
]

_IMPORT_MAP = {
    "MutationEngine": ".actions",
    "ProjectManager": ".project",
    "EstimateService": ".estimate",
    "StreamingSession": ".streaming",
    "ConnectionManager": ".streaming",
    "LLMClient": ".llm",
    "LLMGateway": ".gateway",
    "EstimatorModel": ".model",
    "TokenVerifier": ".auth",
}


def __getattr__(name):
    if name in _IMPORT_MAP:
        import importlib
        module = importlib.import_module(_IMPORT_MAP[name], __package__)
        return getattr(module, name)
    raise AttributeError(f"module 'estimator.core' has no attribute {name}")
