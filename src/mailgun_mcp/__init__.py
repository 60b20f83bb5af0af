"""Mailgun REST API exposed as MCP tools."""
