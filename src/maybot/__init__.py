"""
maybot — a tool-using group-chat agent.

An inbound chat message goes through a bounded plan → execute → respond loop
backed by a rotating pool of Gemini API keys, a restricted SQL toolset and a
small decaying mood model. See maybot.kernel.AgentKernel for the wiring.
"""

__version__ = "0.1.0"
