"""Learned task dispatch and result validation for interchangeable LLM agents."""

__version__ = "0.1.0"
