class TransferError(Exception):
    """Base class for failures reported by transfer collaborators."""


class FetchError(TransferError):
    """Source page could not be fetched (transport failure or non-success status)."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class SearchError(TransferError):
    """Destination search call failed."""


class PlaylistLookupError(TransferError):
    """Existing destination playlists could not be listed."""


class CreateError(TransferError):
    """Destination playlist could not be created."""


class AddError(TransferError):
    """Video could not be added to the destination playlist."""


class AuthorizationError(TransferError):
    """OAuth authorization with the destination service failed."""
