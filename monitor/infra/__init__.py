"""
Infrastructure used by the monitor: HTTP client, response cache, scheduler.
"""
