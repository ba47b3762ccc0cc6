"""MCP integration for agentkb: tool registration, audit trail, stdio server."""
