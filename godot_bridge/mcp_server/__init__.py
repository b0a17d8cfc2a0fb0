"""MCP server side of the stdio bridge."""
