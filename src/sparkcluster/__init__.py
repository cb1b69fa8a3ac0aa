"""
sparkcluster - launch and manage a multi-node container cluster.

Detects the data-plane and management interfaces, discovers peer nodes,
resolves the local head and remote workers, and runs start, stop, status and
exec actions across every host.
"""

__version__ = "0.1.0"
