"""Poll a mailbox for registry notifications and download the linked files."""

__version__ = "1.2.0"
