# card_identity/core/logging/__init__.py
from card_identity.core.logging.json_logger import JSONLogger

__all__ = ["JSONLogger"]
