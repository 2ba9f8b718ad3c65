"""
Monitoring Layer - Operator notifications and maintenance.

Public API:
    DiscordNotifier - webhook sink with deduplication
    ManagerService, ManagerConfig - manager process (monitoring.manager)
"""
from coin_trader.monitoring.alerting import DiscordNotifier

__all__ = [
    "DiscordNotifier",
]
