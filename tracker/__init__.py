"""
Tracker - multi-tenant issue tracking backend.

The interesting part lives in `tracker.workflow` (who may do what, and what
state results) and `tracker.auth` (token lifecycle). Everything else is the
plumbing those packages run on.
"""

__version__ = "0.1.0"
