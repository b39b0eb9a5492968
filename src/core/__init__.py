"""Core domain package for fansrouter.

Core contains rule matching, dispatch, sessions and deduplication logic
without any transport or platform-client code, keeping the routing engine
portable across webhook frontends.
"""
