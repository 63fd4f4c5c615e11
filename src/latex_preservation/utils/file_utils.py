"""File operation utilities."""

import json
import hashlib
from pathlib import Path
from typing import Any, List, Union


def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure directory exists, create if not."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_json_dump(data: Any, filepath: Union[str, Path], indent: int = 2) -> bool:
    """
    Safely dump JSON to file with atomic write.

    Args:
        data: Data to serialize
        filepath: Target file path
        indent: JSON indentation

    Returns:
        True if successful, False otherwise
    """
    filepath = Path(filepath)
    temp_path = filepath.with_suffix('.tmp')

    try:
        ensure_dir(filepath.parent)
        with open(temp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=indent)
        temp_path.replace(filepath)
        return True
    except Exception as e:
        if temp_path.exists():
            temp_path.unlink()
        raise e


def safe_json_load(filepath: Union[str, Path], default: Any = None) -> Any:
    """
    Safely load JSON from file.

    Args:
        filepath: Source file path
        default: Default value if file doesn't exist or is invalid

    Returns:
        Loaded data or default value
    """
    filepath = Path(filepath)

    if not filepath.exists():
        return default

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError):
        return default


def read_text_file(filepath: Union[str, Path]) -> str:
    """Read a text file as UTF-8, replacing undecodable bytes."""
    return Path(filepath).read_text(encoding='utf-8', errors='replace')


def write_text_file(content: str, filepath: Union[str, Path]) -> Path:
    """Write text content, creating parent directories."""
    filepath = Path(filepath)
    ensure_dir(filepath.parent)
    filepath.write_text(content, encoding='utf-8')
    return filepath


def compute_content_hash(content: str, length: int = 16) -> str:
    """Compute short hash of content string."""
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:length]


def get_source_files(
    directory: Union[str, Path],
    suffixes: tuple = (".tex", ".md", ".markdown"),
    recursive: bool = True
) -> List[Path]:
    """Get all notation source files in directory."""
    directory = Path(directory)
    pattern = "**/*" if recursive else "*"
    return sorted(
        p for p in directory.glob(pattern)
        if p.is_file() and p.suffix.lower() in suffixes
    )
