from .setting import EstimatorSettings, get_settings

__all__ = ["EstimatorSettings", "get_settings"]
