"""cupertino: searchable Apple documentation served over MCP."""

__version__ = "0.9.0"
