"""
Remote advertising platform package.

This module contains the remote mutation client interface, its error
hierarchy, the in-memory sandbox and client-side rate limiting.
"""
