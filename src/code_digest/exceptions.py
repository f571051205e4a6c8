from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class CodeDigestError(Exception):
    """Base exception for errors in the code_digest package."""

    message: str = "code_digest failure."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class RootPathError(CodeDigestError):
    """Raised when the scan root is missing, not a directory or unreadable."""

    root: Path = field(default_factory=Path)
    message: str = "The scan root does not exist or is not a readable directory."

    def __str__(self) -> str:
        return f"{self.message} ({self.root})"


@dataclass(frozen=True)
class ConfigurationError(CodeDigestError):
    """Raised when the digest configuration is malformed."""

    message: str = "Invalid digest configuration."
    details: tuple[str, ...] = ()

    def __str__(self) -> str:
        if not self.details:
            return self.message
        return self.message + "\n" + "\n".join(f"- {d}" for d in self.details)
