"""
SMPtweaks: gameplay tweaks for survival multiplayer servers.

This distribution ships the player progression persistence subsystem:
durable per-player level/XP records over an embedded SQLite file or a
networked MySQL/PostgreSQL database, and the live view of connected players.
"""

__version__ = "1.0.0"
