import httpx


class UpstreamUnavailable(Exception):
    """The upstream could not be reached or failed while answering."""

    def __init__(self, destination: str, cause: Exception):
        super().__init__(f"Upstream {destination} unavailable: {cause}")
        self.destination = destination
        self.cause = cause

    @property
    def timed_out(self) -> bool:
        return isinstance(self.cause, httpx.TimeoutException)

    @property
    def status_code(self) -> int:
        return 504 if self.timed_out else 502
