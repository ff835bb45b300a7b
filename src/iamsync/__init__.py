"""iamsync: reconcile IAM users and groups from a tabular source."""

__version__ = "0.3.0"
