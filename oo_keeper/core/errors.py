# /oo_keeper/core/errors.py
# Error taxonomy shared by the client, the resolver and the keeper pipeline.


class KeeperError(Exception):
    pass


class QueryError(KeeperError):
    """A ledger or fallback-oracle read failed. The caller may retry the whole update."""


class StaleStateError(KeeperError):
    """A read accessor was used before the first successful update()."""


class UnresolvableIdentifier(KeeperError):
    def __init__(self, identifier: str):
        super().__init__(f"No decimal precision registered for identifier {identifier!r}")
        self.identifier = identifier


class SubmissionRejected(KeeperError):
    """The ledger reverted a write. Terminal for the item."""

    def __init__(self, action: str, reason: str):
        super().__init__(f"{action} rejected: {reason}")
        self.action = action
        self.reason = reason


class TransportTimeout(KeeperError):
    """A write round-trip exceeded its bound."""


class PriceFeedError(KeeperError):
    """The feed resolved but could not produce a price for the requested time."""
