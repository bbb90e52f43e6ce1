"""Status change adapters for publishing membership changes.

Implementations support multiple output channels:
- Stdout (terminal pretty-print)
- Markdown file (date-organized audit trail)
"""
