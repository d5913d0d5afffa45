"""MCP protocol adapter."""

from .resources import TEMPLATES, ResourceReader, ResourceTemplate
from .server import SERVER_NAME, MCPServer, create_server, main

__all__ = ["MCPServer", "SERVER_NAME", "create_server", "main", "ResourceReader", "ResourceTemplate", "TEMPLATES"]
