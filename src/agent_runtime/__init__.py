"""
Agent-Runtime - durable, forkable, compressible conversations for tool-using LLM agents.
"""

__version__ = "0.1.0"
