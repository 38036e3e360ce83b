from __future__ import annotations

from pathlib import Path

SUPPORTED_EXTENSIONS = {".txt", ".md", ".pdf", ".docx", ".html", ".htm", ".csv", ".json"}


def list_source_files(
    source_dir: Path,
    supported_extensions: set[str] | None = None,
) -> list[Path]:
    if not source_dir.exists():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    if not source_dir.is_dir():
        raise NotADirectoryError(f"Source path is not a directory: {source_dir}")

    extensions = supported_extensions or SUPPORTED_EXTENSIONS
    files = sorted(
        path
        for path in source_dir.rglob("*")
        if path.is_file() and path.suffix.lower() in extensions and path.stat().st_size > 0
    )

    if not files:
        raise ValueError(
            f"No non-empty supported documents found in {source_dir} "
            f"(supported: {sorted(extensions)})"
        )

    return files
