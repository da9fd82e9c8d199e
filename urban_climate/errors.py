class DashboardError(Exception):
    """Any failure that aborts a dashboard request; carries a readable message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
