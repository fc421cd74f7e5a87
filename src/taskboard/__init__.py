"""Task hierarchy and Kanban ordering engine for project boards."""

__version__ = "0.1.0"
