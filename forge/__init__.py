"""
Forge - AI-driven execution of a project's development plan.

Parses a markdown task plan into a dependency graph, runs each task through
an AI coding agent and keeps the plan document, the persisted execution
record and git history consistent across pause, retry, skip and abort.
"""

__version__ = "0.1.0"
