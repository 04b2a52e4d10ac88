"""
Idealista listing feed source module.

Provides ingestion of the Idealista property feed:
- Feed files published on an FTP server (XML or JSON)
- Partner REST API for listing images (optional)

The feed is the source of truth; nothing is persisted beyond the cache.
"""

__all__ = ["client", "extraction", "ingest", "metadata", "parser", "transport"]
