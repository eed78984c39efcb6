from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from fnmatch import fnmatch


DEFAULT_EXCLUDED_DIRS: frozenset[str] = frozenset(
    {
        "node_modules",
        ".next",
        ".turbo",
        ".vercel",
        ".git",
        ".cache",
        "dist",
        "build",
        "out",
        "coverage",
        "__pycache__",
        ".venv",
        "venv",
    }
)

DEFAULT_EXCLUDED_FILES: tuple[str, ...] = (
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "bun.lockb",
    ".DS_Store",
    "Thumbs.db",
    "*.log",
    "*.tsbuildinfo",
)

DEFAULT_BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        # images
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico", ".bmp", ".tiff", ".avif",
        # fonts
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        # media
        ".mp3", ".mp4", ".wav", ".ogg", ".webm", ".mov", ".avi",
        # archives and documents
        ".zip", ".tar", ".gz", ".tgz", ".rar", ".7z", ".pdf",
        # compiled artifacts
        ".exe", ".dll", ".so", ".dylib", ".bin", ".wasm", ".pyc", ".class", ".jar",
        # databases
        ".db", ".sqlite", ".sqlite3",
    }
)


@dataclass(frozen=True)
class ExclusionPolicy:
    """Which sandbox paths never enter the project file map.

    Shared by push and pull so binary content is kept out of durable storage
    no matter which direction a file travels.
    """

    excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS
    excluded_files: tuple[str, ...] = DEFAULT_EXCLUDED_FILES
    binary_extensions: frozenset[str] = DEFAULT_BINARY_EXTENSIONS
    # Fraction of a file that may be null bytes before it counts as binary
    max_null_ratio: float = field(default=0.5)

    def is_excluded_path(self, path: str) -> bool:
        parts = [p for p in path.split("/") if p]
        if not parts:
            return True
        if any(part in self.excluded_dirs for part in parts[:-1]):
            return True
        name = parts[-1]
        return any(fnmatch(name, pattern) for pattern in self.excluded_files)

    def is_binary_path(self, path: str) -> bool:
        ext = posixpath.splitext(path.lower())[1]
        return ext in self.binary_extensions

    def is_binary_content(self, content: str) -> bool:
        return "\x00" in content

    def accepts(self, path: str, content: str | None = None) -> bool:
        if self.is_excluded_path(path) or self.is_binary_path(path):
            return False
        return content is None or not self.is_binary_content(content)

    def strip_null_bytes(self, content: str) -> tuple[str, bool]:
        """Remove null bytes from text read out of a sandbox.

        Returns the cleaned text and whether the file should be treated as
        binary (more than `max_null_ratio` of it was null bytes).
        """
        if "\x00" not in content:
            return content, False
        cleaned = content.replace("\x00", "")
        removed = len(content) - len(cleaned)
        return cleaned, removed > len(content) * self.max_null_ratio

    def find_prune_expression(self) -> str:
        """`find` predicate that prunes the excluded directories."""
        clauses = " -o ".join(
            f"-path './{name}' -o -path '*/{name}'" for name in sorted(self.excluded_dirs)
        )
        return f"\\( {clauses} \\) -prune"


DEFAULT_POLICY = ExclusionPolicy()
