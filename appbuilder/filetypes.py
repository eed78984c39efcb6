import posixpath


_LANGUAGES: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".json": "json",
    ".css": "css",
    ".scss": "scss",
    ".html": "html",
    ".md": "markdown",
    ".mdx": "markdown",
    ".py": "python",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".svg": "xml",
    ".sh": "shell",
    ".prisma": "prisma",
}

_CONFIG_NAMES = {
    "package.json",
    "tsconfig.json",
    "components.json",
    ".eslintrc.json",
    ".gitignore",
    ".env",
    ".env.local",
}


def file_extension(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


def infer_language(path: str) -> str | None:
    return _LANGUAGES.get(file_extension(path))


def infer_file_type(path: str) -> str:
    """Coarse role of a file, used in listings shown to the agent."""
    name = posixpath.basename(path)
    ext = file_extension(path)
    if name in _CONFIG_NAMES or ".config." in name:
        return "config"
    if ext in (".tsx", ".jsx"):
        return "component"
    if ext in (".ts", ".js", ".mjs", ".cjs", ".py"):
        return "script"
    if ext in (".css", ".scss"):
        return "style"
    if ext in (".md", ".mdx"):
        return "documentation"
    if ext in (".json", ".yml", ".yaml"):
        return "data"
    return "other"


def line_count(content: str) -> int:
    if not content:
        return 0
    return content.count("\n") + (0 if content.endswith("\n") else 1)
