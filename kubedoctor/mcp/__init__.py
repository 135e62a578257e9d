"""MCP stdio surface."""

from kubedoctor.mcp.server import MCPServer

__all__ = ["MCPServer"]
