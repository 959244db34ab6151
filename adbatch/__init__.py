"""
Ad batch operations engine.

Bulk mutation jobs against a remote advertising platform, with an approval
lifecycle, bounded concurrent execution and snapshot-based rollback.
"""
