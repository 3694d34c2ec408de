"""Chat model access for the pipeline roles."""

from lens_agent.llm.client import LangChainInvoker, create_llm

__all__ = ["LangChainInvoker", "create_llm"]
