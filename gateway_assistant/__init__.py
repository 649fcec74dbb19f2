"""Gateway Assistant - a tool-calling chat agent with a sandboxed local capability gateway."""

__version__ = "0.1.0"
