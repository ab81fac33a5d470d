"""ContextForge: zoned context assembly and streaming generation coordination."""

__version__ = "0.1.0"
