# Alert Feed - Error Taxonomy
# MalformedTimeString / StoreUnavailable surface to the submitter; the other two are recovered locally.


class AlertFeedError(Exception):
    pass


class MalformedTimeString(AlertFeedError):
    """Shared trigger time did not match h:mm[:ss] AM/PM; fails the whole submission."""


class MalformedPriceEntry(AlertFeedError):
    """A single trigger price is missing or not a finite number; the entry is dropped."""


class StoreUnavailable(AlertFeedError):
    """Durable storage failed; the enclosing operation is aborted with no broadcast."""


class ObserverUnreachable(AlertFeedError):
    """One observer could not be pushed to; it is dropped and the fan-out continues."""
