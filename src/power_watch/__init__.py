"""
Power Watch: household power state monitor.
Combines device liveness pings and DTEK outage data, notifies Telegram subscribers.
"""

__version__ = "0.3.0"
