"""
Exceptions raised at the data-acquisition boundary.

They are caught by the sync service and turned into warnings; nothing in the
aggregation core raises them.
"""


class ConnectorError(Exception):
    """A courier or storefront API call failed"""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class ConnectorAuthError(ConnectorError):
    """Credentials were rejected or are missing"""


class ConnectorNotConfigured(ConnectorError):
    """The integration has no credentials saved"""
