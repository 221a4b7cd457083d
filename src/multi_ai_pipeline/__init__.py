"""Multi-AI Pipeline: file-based orchestration of planning, coding and review CLIs."""

__version__ = "0.1.0"
