"""
Ingestion job console: launch, guard and monitor detached data-ingestion jobs.
"""

__version__ = "1.0.0"
