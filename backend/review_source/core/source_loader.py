"""
Reading source files for review
"""
from pathlib import Path
from typing import List, Tuple
from loguru import logger


SourceFile = Tuple[str, str]  # (path, content)


def read_source(path: str) -> SourceFile:
    file_path = Path(path)
    return str(file_path), file_path.read_text(encoding='utf-8', errors='replace')


def read_folder(path: str) -> List[SourceFile]:
    """
    Read every file directly inside a folder (not recursive)

    Unreadable files are skipped.
    """
    folder = Path(path)
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a folder: {folder}")

    files = []
    for entry in sorted(folder.iterdir()):
        if not entry.is_file():
            continue
        try:
            files.append(read_source(str(entry)))
        except OSError as e:
            logger.warning(f"Failed to read file {entry.name}: {e}")

    logger.info(f"📂 Read {len(files)} files from {folder}")
    return files


def file_extension(path: str) -> str:
    """Lower-cased extension without the dot"""
    return Path(path).suffix.lstrip(".").lower()
