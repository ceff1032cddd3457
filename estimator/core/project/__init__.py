"""
Project Management Module

Exports:
- ProjectManager: CRUD for projects, line items and prompt history
"""

from .project_manager import ProjectManager

__all__ = [
    "ProjectManager",
]
