"""Payment source adapters for bulk import of historical payments.

Implementations:
- Squarespace Commerce orders API (cursor-paginated)
"""
