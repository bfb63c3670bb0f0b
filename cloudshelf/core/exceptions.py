# Copyright (c) 2025 Trae AI. All rights reserved.

"""
Exceptions raised by the catalog engine.

Each carries an HTTP status_code so the JSON API can map it directly.
"""


class CloudShelfError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ListingError(CloudShelfError):
    """
    The remote file lister failed for a library root. Fatal for that library's scan.
    """

    status_code: int = 502


class MetadataTransportError(CloudShelfError):
    """
    A metadata provider could not be reached or answered with a server error.
    """

    status_code: int = 502

    def __init__(self, message: str, provider: str = ""):
        self.provider = provider
        super().__init__(message)


class RateLimitExceededError(MetadataTransportError):
    """
    The provider kept answering 429 until the retry ceiling was reached.
    """

    status_code: int = 429


class LibraryNotFoundError(CloudShelfError):
    status_code: int = 404


class ItemNotFoundError(CloudShelfError):
    status_code: int = 404


class LibraryTypeLockedError(CloudShelfError):
    """
    A library's type cannot change once items exist under it.
    """

    status_code: int = 409
