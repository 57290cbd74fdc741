"""keryx: release automation driven by commit history and an LLM CLI."""

__version__ = "0.1.0"
