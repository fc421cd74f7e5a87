"""Task hierarchy and status-ordering engine.

This package provides the task model, the pure hierarchy validator, the
transactional board stores, and the :class:`TaskEngine` service that ties
them together for the Kanban-style project board.
"""
