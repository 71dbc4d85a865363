"""
NyelvSzó real-time layer.

Live connections, role-gated channels and rooms, collaborative entry edits
backed by an append-only event log, and multi-channel notifications for the
NyelvSzó bilingual terminology dictionary.
"""

__version__ = "0.1.0"
