from __future__ import annotations

from enum import StrEnum, auto
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

if TYPE_CHECKING:
    from collections.abc import Callable

    from code_digest.settings import Settings

    FileProcessorFn = Callable[[Path, "Settings"], str]

_ = Path()


class FileType(StrEnum):
    """Categorization of file types used for language statistics and code fences.

    This is a heuristic classification based on file extensions only; content
    sniffing happens later in the content classifier.
    """

    TEXT = auto()
    BINARY = auto()
    IMAGE = auto()
    PYTHON = auto()
    NOTEBOOK = auto()
    TOML = auto()
    JSON = auto()
    MARKDOWN = auto()
    YAML = auto()
    HTML = auto()
    CSS = auto()
    JAVASCRIPT = auto()
    TYPESCRIPT = auto()
    BASH = auto()
    RUST = auto()
    GO = auto()
    PHP = auto()
    SQL = auto()
    JAVA = auto()
    C = auto()
    CPP = auto()
    CSHARP = auto()
    RUBY = auto()
    XML = auto()
    INI = auto()
    PEM = auto()
    OTHER = auto()


class NodeKind(StrEnum):
    """Kind of filesystem node recorded by the traversal engine."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


class BinaryPolicy(StrEnum):
    """What to emit for files sniffed as binary."""

    SKIP = "skip"
    INCLUDE_PLACEHOLDER = "includePlaceholder"
    INCLUDE_BASE64 = "includeBase64"


class OutputFormat(StrEnum):
    """Shape of the assembled digest."""

    TEXT = "text"
    MARKDOWN = "markdown"
    JSON = "json"


class TreeMode(StrEnum):
    """Which directory tree, if any, is rendered in the digest."""

    FULL = "full"
    MINIMAL = "minimal"
    NONE = "none"


class FilterPreset(StrEnum):
    """Named include/exclude glob bundles."""

    DEFAULT = "default"
    CODE_ONLY = "codeOnly"
    DOCS_ONLY = "docsOnly"
    TESTS_ONLY = "testsOnly"


EXT2LANG: dict[str, FileType] = {
    ".bash": FileType.BASH,
    ".bmp": FileType.IMAGE,
    ".c": FileType.C,
    ".cc": FileType.CPP,
    ".cfg": FileType.INI,
    ".conf": FileType.INI,
    ".cpp": FileType.CPP,
    ".crt": FileType.PEM,
    ".cs": FileType.CSHARP,
    ".css": FileType.CSS,
    ".cxx": FileType.CPP,
    ".gif": FileType.IMAGE,
    ".go": FileType.GO,
    ".h": FileType.C,
    ".hpp": FileType.CPP,
    ".htm": FileType.HTML,
    ".html": FileType.HTML,
    ".ini": FileType.INI,
    ".ipynb": FileType.NOTEBOOK,
    ".java": FileType.JAVA,
    ".jpeg": FileType.IMAGE,
    ".jpg": FileType.IMAGE,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".jsx": FileType.JAVASCRIPT,
    ".key": FileType.PEM,
    ".markdown": FileType.MARKDOWN,
    ".md": FileType.MARKDOWN,
    ".mjs": FileType.JAVASCRIPT,
    ".pem": FileType.PEM,
    ".php": FileType.PHP,
    ".png": FileType.IMAGE,
    ".py": FileType.PYTHON,
    ".rb": FileType.RUBY,
    ".rs": FileType.RUST,
    ".sh": FileType.BASH,
    ".sql": FileType.SQL,
    ".svg": FileType.IMAGE,
    ".toml": FileType.TOML,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".txt": FileType.TEXT,
    ".webp": FileType.IMAGE,
    ".xml": FileType.XML,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
    ".zsh": FileType.BASH,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.PYTHON: "python",
    FileType.NOTEBOOK: "json",
    FileType.TOML: "toml",
    FileType.JSON: "json",
    FileType.MARKDOWN: "markdown",
    FileType.YAML: "yaml",
    FileType.HTML: "html",
    FileType.CSS: "css",
    FileType.JAVASCRIPT: "javascript",
    FileType.TYPESCRIPT: "typescript",
    FileType.BASH: "bash",
    FileType.RUST: "rust",
    FileType.GO: "go",
    FileType.PHP: "php",
    FileType.SQL: "sql",
    FileType.JAVA: "java",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.CSHARP: "csharp",
    FileType.RUBY: "ruby",
    FileType.XML: "xml",
    FileType.INI: "ini",
    FileType.PEM: "",
    FileType.IMAGE: "",
    FileType.BINARY: "",
    FileType.TEXT: "",
    FileType.OTHER: "",
}

DEFAULT_EXCLUDES = [
    "node_modules/**",
    ".git/**",
    "*.log",
    "*.tmp",
    ".DS_Store",
    "Thumbs.db",
]

DEFAULT_IGNORE_FILES = [".gitignore", ".digestignore"]

_CODE_GLOBS = [
    "**/*.js",
    "**/*.ts",
    "**/*.jsx",
    "**/*.tsx",
    "**/*.py",
    "**/*.java",
    "**/*.go",
    "**/*.cpp",
    "**/*.c",
    "**/*.cs",
    "**/*.rb",
    "**/*.php",
    "**/*.rs",
    "**/*.swift",
    "**/*.kt",
    "**/*.scala",
    "**/*.sh",
    "**/*.sql",
    "**/*.html",
    "**/*.css",
    "**/*.scss",
    "**/*.json",
    "**/*.xml",
    "**/*.yml",
    "**/*.yaml",
]
_TEST_GLOBS = ["**/test.*", "**/spec.*", "**/tests/**"]

FILTER_PRESETS: dict[FilterPreset, dict[str, list[str]]] = {
    FilterPreset.DEFAULT: {"include": [], "exclude": []},
    FilterPreset.CODE_ONLY: {
        "include": _CODE_GLOBS,
        "exclude": ["docs/**", "**/*.md", "**/*.rst", "**/*.ipynb"],
    },
    FilterPreset.DOCS_ONLY: {
        "include": ["**/*.md", "**/*.rst"],
        "exclude": [*_CODE_GLOBS, "**/*.ipynb", *_TEST_GLOBS],
    },
    FilterPreset.TESTS_ONLY: {
        "include": _TEST_GLOBS,
        "exclude": ["**/*.md", "**/*.rst", "docs/**", "**/*.ipynb"],
    },
}

SIZE_BUCKETS: list[tuple[str, int | None]] = [
    ("≤1KB", 1024),
    ("1–10KB", 10 * 1024),
    ("10–100KB", 100 * 1024),
    ("100KB–1MB", 1024 * 1024),
    (">1MB", None),
]

FILE_PROCESSOR: dict[str, Callable[[Path, Settings], str]] = {}


def guess_file_type(path: Path) -> FileType:
    """Heuristic guess of file type based on extension.

    Args:
        path (Path): The file path to guess the type for.

    Returns:
        FileType: The guessed file type, or FileType.OTHER if unknown.
    """
    return EXT2LANG.get(path.suffix.lower(), FileType.OTHER)


def guess_language(file_type: FileType) -> str:
    """Get the suggested code fence language for a given file type.

    Args:
        file_type (FileType): The categorized file type.

    Returns:
        str: The suggested language name for code fences, or empty string if none.
    """
    return _FENCE_LANGUAGE.get(file_type, "")


def size_bucket(size: int) -> str:
    """Name of the size-distribution bucket a byte size falls into."""
    for label, ceiling in SIZE_BUCKETS:
        if ceiling is None or size <= ceiling:
            return label
    return SIZE_BUCKETS[-1][0]


class FileDescriptor(BaseModel):
    """Immutable description of one node emitted by the traversal engine.

    Attributes:
        path: Absolute path to the node on disk.
        rel_path: POSIX path relative to the scan root.
        size: Size in bytes (lstat size for symlinks).
        kind: File, directory or symlink.
        is_symlink: Whether the node is a symbolic link (never followed).
        depth: Number of directories between the scan root and the node.
        mtime: POSIX mtime (float seconds since epoch).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    path: Path = Field(..., description="Absolute path")
    rel_path: str = Field(..., description="Path relative to the scan root")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    kind: NodeKind = Field(default=NodeKind.FILE, description="Node kind")
    is_symlink: bool = Field(default=False, description="Symbolic link flag")
    depth: int = Field(default=0, ge=0, description="Depth from the scan root")
    mtime: float | None = Field(default=None, description="POSIX modification time (seconds)")

    @computed_field
    @property
    def extension(self) -> str:
        """Lower-cased suffix including the leading dot (may be empty)."""
        return self.path.suffix.lower()

    @computed_field
    @property
    def file_type(self) -> FileType:
        """Categorize the file type based on extension."""
        return guess_file_type(self.path)

    @computed_field
    @property
    def language(self) -> str:
        """Get the suggested code fence language based on the file type."""
        return guess_language(self.file_type)

    @property
    def name(self) -> str:
        return self.path.name


def register_file_processor(
    key: str | list[str],
) -> Callable[[FileProcessorFn], FileProcessorFn]:
    """Decorator to register a content processing function based on file suffix or name.

    The content classifier consults this registry before its generic text/binary
    handling, which lets structured documents (e.g. notebooks) render themselves.

    Args:
        key (str | list[str]): The file suffix (e.g. ".ipynb") or exact lower-cased
            filename that the decorated function should handle. Can be a single string
            or a list of strings for multiple keys.

    Returns:
        Callable[[FileProcessorFn], FileProcessorFn]: A decorator that registers the given function
        in the FILE_PROCESSOR mapping under the specified key(s) and returns the original function.
    """

    def decorator(func: FileProcessorFn) -> FileProcessorFn:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            return func(*args, **kwargs)

        if isinstance(key, list):
            for k in key:
                FILE_PROCESSOR[k] = wrapper
        else:
            FILE_PROCESSOR[key] = wrapper
        return wrapper

    return decorator
