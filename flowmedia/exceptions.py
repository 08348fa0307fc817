"""Exception hierarchy for flowmedia.

Only operation-level failures are raised. Best-effort work (artwork lookup,
probing a single file during a scan) degrades to an empty value instead.
"""


class FlowMediaError(Exception):
    """Base exception for all flowmedia errors."""

    pass


class ScanError(FlowMediaError):
    """A whole library scan failed; carries the reason shown to the user."""

    pass


class FolderSelectionCancelled(ScanError):
    """The user dismissed the folder chooser."""

    pass


class CatalogError(FlowMediaError):
    """The media catalog could not be opened or queried."""

    pass


class SessionError(FlowMediaError):
    """Errors related to the media session, notification or volume UI."""

    pass


class ConfigurationError(FlowMediaError):
    """Errors related to configuration."""

    pass
