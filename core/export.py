"""
Task Export

Save the active task to disk as SRT (the raw transcript) or Markdown
(the edited notes with HTML tags stripped).
"""

import re
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

from core.models import Task

# Configure structured logger
logger = structlog.get_logger(__name__)

_HTML_TAG = re.compile(r'<[^>]+>')


class ExportFormat(str, Enum):
    SRT = "srt"
    MARKDOWN = "md"


class ExportError(Exception):
    """Export file could not be written"""
    pass


def clean_filename(name: str) -> str:
    invalid_chars = '<>:"/\\|?*'
    for char in invalid_chars:
        name = name.replace(char, '_')
    name = ' '.join(name.split())
    return name[:100] or "untitled"


def strip_html(content: str) -> str:
    return _HTML_TAG.sub('', content.replace('<br>', '\n'))


def export_content(task: Task, fmt: ExportFormat) -> Optional[str]:
    if fmt == ExportFormat.SRT:
        return task.transcription_result or None
    return strip_html(task.content) or None


def export_task(task: Task, fmt: ExportFormat, directory: Path = Path(".")) -> Optional[Path]:
    """Write the task in the given format; returns the path, or None when there is nothing to write"""
    fmt = ExportFormat(fmt)
    content = export_content(task, fmt)
    if content is None:
        logger.warning("Nothing to export", task_id=task.id, format=fmt.value)
        return None

    filepath = Path(directory) / f"{clean_filename(task.name)}.{fmt.value}"
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w', encoding='utf-8') as f:
            f.write(content)
    except OSError as e:
        logger.error("Failed to save export file", filepath=str(filepath), error=str(e))
        raise ExportError(f"Failed to save export: {e}") from e

    logger.info("Export file saved",
                task_id=task.id,
                filepath=str(filepath),
                size_kb=filepath.stat().st_size / 1024)
    return filepath
