"""
Utility functions for the orchestration engine.

- monitoring: Langfuse tracing handler for inference calls
"""
