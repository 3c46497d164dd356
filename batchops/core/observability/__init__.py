from .logging_config import setup_logging
from .timing import time_block

__all__ = ["setup_logging", "time_block"]
