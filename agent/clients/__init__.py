"""
Clients for the engine's external collaborators.

InferenceClient and ToolClient are protocols; engines receive instances by
injection so tests can substitute fakes.
"""

from agent.clients.inference_client import InferenceClient, LangChainInferenceClient
from agent.clients.tool_client import HttpToolClient, ToolClient

__all__ = [
    "HttpToolClient",
    "InferenceClient",
    "LangChainInferenceClient",
    "ToolClient",
]
