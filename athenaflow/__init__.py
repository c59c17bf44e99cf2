"""
athenaflow: LLM streaming gateway, FILE CHANGES extraction and
self-healing deployments.
"""

__version__ = "0.1.0"
