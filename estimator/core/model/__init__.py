from .model import EstimatorModel, SUPPORTED_PROVIDERS

__all__ = ["EstimatorModel", "SUPPORTED_PROVIDERS"]
