"""Live attention queue and session board for agentic work sessions."""

__version__ = "0.3.0"
