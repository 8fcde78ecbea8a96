"""MCP tool surface for the memory store."""
