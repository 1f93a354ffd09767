"""One-way FTP synchronization of local directory trees."""

__version__ = "1.0.0"
