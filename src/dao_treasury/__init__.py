"""DAO treasury — proportional revenue sharing across a dynamic set of recipients."""

__version__ = "0.1.0"
