from typing import Optional


class IntegrationError(Exception):
    """A call to the messaging, record store or AI service failed."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class ResourceError(IntegrationError):
    """An attachment could not be downloaded or uploaded."""
