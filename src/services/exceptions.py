"""Shared exceptions for service layer operations."""


class BookmarkNotFoundError(Exception):
    """Raised when a bookmark doesn't exist or isn't owned by the user."""

    def __init__(self, bookmark_id: int) -> None:
        self.bookmark_id = bookmark_id
        super().__init__(f"Bookmark {bookmark_id} not found")


class UsernameTakenError(Exception):
    """Raised when registering a username that already exists."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Username '{username}' is already taken")


class InvalidCredentialsError(Exception):
    """Raised when a username/password pair doesn't match an account."""

    def __init__(self) -> None:
        super().__init__("Invalid username or password")


class ImportValidationError(Exception):
    """
    Raised when an import payload is rejected as a whole.

    Individual bad entries are skipped rather than raising; this is for
    payloads that are not a list, or contain no usable entries at all.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
