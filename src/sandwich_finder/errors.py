from __future__ import annotations


class SandwichFinderError(Exception):
    """Base class for every error that should stop a stage."""


class ConfigError(SandwichFinderError):
    pass


class RpcError(SandwichFinderError):
    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method


class LeaderScheduleError(SandwichFinderError):
    pass


class RegistryError(SandwichFinderError):
    pass


class MissingArtifactError(SandwichFinderError):
    def __init__(self, filename: str, stage: str) -> None:
        super().__init__(
            f"Required file not found: {filename}. Run the '{stage}' stage first."
        )
        self.filename = filename
        self.stage = stage
