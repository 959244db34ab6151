"""
Batch operations package.

This package contains the batch lifecycle, the execution and rollback engines
and the service facade built on top of them.
"""
