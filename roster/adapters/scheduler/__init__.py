"""Scheduler adapters for driving reconciliation passes.

The daemon adapter runs passes on an asyncio loop with a configurable
interval. External schedulers (cron, Kubernetes CronJob) can instead
invoke the CLI `reconcile` command.
"""
