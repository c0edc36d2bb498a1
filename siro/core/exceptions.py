class SiroError(Exception):
    """Base class for errors raised by the chat core."""


class StoreError(SiroError):
    """The document store could not complete a read or write.

    Treated as transient: the event that hit it is logged and dropped.
    """


class DuplicateKeyError(SiroError):
    """An insert collided with a unique key.

    Carries the collection and the conflicting key so callers can re-fetch the
    document that won.
    """

    def __init__(self, collection: str, key: str, value):
        super().__init__(f"duplicate {collection}.{key}={value}")
        self.collection = collection
        self.key = key
        self.value = value

