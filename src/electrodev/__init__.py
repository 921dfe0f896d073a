"""Development session orchestrator for desktop apps built from main, preload and renderer pipelines."""

__version__ = "0.1.0"

__all__ = ["__version__"]
