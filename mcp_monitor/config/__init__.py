"""Configuration for MCP Monitor."""
