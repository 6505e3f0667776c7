"""
Core infrastructure layer for SMPtweaks.

- Configuration (Config, ConfigManager)
- Logging (structured logging, LogContext)
- Database (ConnectionPool, StoreMetrics)
- Exceptions (ProgressionStoreException hierarchy)

Submodules are imported directly (``smptweaks.core.config``,
``smptweaks.core.logging`` ...); this package performs no imports so that
importing one subsystem never drags in the others.
"""
