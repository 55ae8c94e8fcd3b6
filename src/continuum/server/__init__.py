"""Continuum MCP server package."""
