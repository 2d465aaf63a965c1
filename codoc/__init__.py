"""Codoc - streaming chatbot engine for the Codoc learning app.

Opens server-pushed event streams for AI chat turns, decodes and
coalesces streamed tokens, tracks a per-problem conversation state
machine, and cooperates with a shared rate-limit governor.
"""

__version__ = "0.1.0"
