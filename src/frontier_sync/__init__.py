"""Git-based project synchronization with three-way conflict detection."""

__version__ = "0.4.0"
