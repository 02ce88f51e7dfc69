"""Memory collaborators for persisted conversation history."""

from .buffer import BufferMemory, WindowMemory

__all__ = ["BufferMemory", "WindowMemory"]
