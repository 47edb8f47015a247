"""ledgersync - idempotent provisioning of the protocol config account and its token mint."""

__version__ = "0.1.0"
