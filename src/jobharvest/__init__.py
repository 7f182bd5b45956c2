"""
JobHarvest - Resumable, unattended job-posting collector.

Walks a keyword x region x filter-step search space through a controlled
browser, persists postings durably, and broadcasts live task status.
"""

__version__ = "0.1.0"
__app_name__ = "jobharvest"
