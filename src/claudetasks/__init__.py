"""HTTP dispatcher that runs Claude Code tasks as background processes."""

__version__ = "0.1.0"
