"""
content-flow: AI-assisted content generation with reviewable suggestions.

Requests go through a cache-first, quota-bounded orchestrator with retry and
fallback across providers; results become suggestions that an editor
accepts or rejects, and every change lands in an append-only history.
"""

__version__ = "0.1.0"
