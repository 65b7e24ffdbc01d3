"""
kernel/ — maybot Agent Kernel

Public API:
    from maybot.kernel import AgentKernel
"""

from maybot.kernel.kernel import AgentKernel, KernelConfig

__all__ = ["AgentKernel", "KernelConfig"]
