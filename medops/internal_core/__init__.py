from .config import ServiceConfig, load_config
from .store import InMemoryCaseStore

__all__ = ["ServiceConfig", "load_config", "InMemoryCaseStore"]
