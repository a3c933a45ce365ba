"""Block notifications, fetch helpers, DONT_HAVE timeouts and provider queries for block exchange."""

__version__ = "0.1.0"