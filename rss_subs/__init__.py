"""
RSS Subs - Subscribe Telegram chats to RSS/Atom feeds.

A Python bot that polls subscribed RSS/Atom feeds on a fixed cadence
and forwards newly published articles to every subscribed chat.
"""

__version__ = "1.0.0"
