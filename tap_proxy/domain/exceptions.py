"""Domain-specific exceptions — framework-independent."""


class ConfigurationError(Exception):
    """Raised at startup when a required setting is missing or invalid."""

    def __init__(self, setting: str, message: str):
        self.setting = setting
        self.message = message
        super().__init__(f"{setting}: {message}")


class AnalyzerAlreadyRegisteredError(Exception):
    """Raised when registering two analyzers under the same name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Analyzer '{name}' is already registered")


class AnalyzerNotFoundError(Exception):
    """Raised when a named analyzer is not part of the registry."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Analyzer '{name}' not found")


class MetricsWorkerNotRunningError(Exception):
    """Raised when a recompute is requested but no metrics worker is running."""

    def __init__(self) -> None:
        super().__init__("MetricsWorker not initialized. Cannot recompute logs.")


class TokenCountError(Exception):
    """Raised when the token counting provider returns an error.

    Mirrors the shape of an upstream API failure so callers can inspect the
    status code without parsing the message.
    """

    def __init__(self, provider: str, status_code: int, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{provider}] {status_code}: {message}")
