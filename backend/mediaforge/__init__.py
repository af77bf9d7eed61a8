"""MediaForge: generation-and-persistence pipeline for AI-generated media."""

__version__ = "0.1.0"
