"""MCP server for project-scoped tools."""

from .server import ProjectToolsMCPServer

__all__ = ["ProjectToolsMCPServer"]
