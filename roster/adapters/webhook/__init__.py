"""Webhook receiver adapters.

Provides HTTP endpoints for external systems and review tooling:
- Receive payment events (generic JSON and Squarespace order webhooks)
- Trigger reconciliation passes
- Read membership status and the duplicate and conflict review queues
"""
