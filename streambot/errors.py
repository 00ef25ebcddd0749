from __future__ import annotations


class StreambotError(Exception):
    pass


class ConfigurationError(StreambotError):
    """Missing bot identity or credentials. Fatal before the stream starts."""


class MediaError(StreambotError):
    pass


class FiletypeError(MediaError, TypeError):
    pass


class EmptyFileError(MediaError, IOError):
    pass


class HTTPResponseError(MediaError, IOError):
    pass


class NoUploadedFilesError(StreambotError):
    pass


class PlatformError(StreambotError):
    pass


class AlreadyActedError(PlatformError):
    """Raised by a platform client when a post is already favorited or retweeted."""
