"""LensAgent - multi-stage bug report analysis pipeline on LangGraph."""

__version__ = "0.4.0"

from lens_agent.config import get_config
from lens_agent.state import PipelineState

__all__ = [
    "get_config",
    "PipelineState",
    "__version__",
]
