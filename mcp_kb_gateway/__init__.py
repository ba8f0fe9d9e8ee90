"""MCP-шлюз базы знаний: мультиплексирование SSE-сессий для вызова инструментов."""

__version__ = "1.0.0"
