"""MCP server exposing the content sync core as tools."""
