"""Markdown output artifact that receives streamed text."""
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

import structlog

from ragtutor import config

logger = structlog.get_logger()


def output_filename(prefix: str = None, now: Optional[datetime] = None) -> str:
    """Build ``<prefix>_<YYYY-MM-DD>_<HH_MM>.md``."""
    prefix = prefix or config.OUTPUT_PREFIX
    now = now or datetime.now()
    return f"{prefix}_{now:%Y-%m-%d}_{now:%H_%M}.md"


def render_header(base_prompt: str, user_prompt: str) -> str:
    """Header block written when the artifact is created."""
    return (
        "\n---\n\n"
        f"**Prompt:** {base_prompt}\n\n"
        f"**User Details:** {user_prompt}\n\n"
        "---\n\n"
    )


class MarkdownSink:
    """Append-only writer for one output document.

    Every append is flushed so an interrupted run leaves a readable
    partial document. Single writer only.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: Optional[TextIO] = None
        self.characters_written = 0

    @classmethod
    def create(
        cls,
        directory: Path,
        header: str,
        prefix: str = None,
        now: Optional[datetime] = None,
    ) -> "MarkdownSink":
        """Create a new artifact in ``directory`` and write its header.

        An existing file with the same name is appended to rather than
        truncated.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        sink = cls(directory / output_filename(prefix, now))
        sink.open()
        sink.append(header)
        sink.characters_written = 0

        logger.info("output_artifact_created", path=str(sink.path))
        return sink

    def open(self) -> None:
        if self._file is None:
            self._file = open(self.path, "a", encoding="utf-8")

    def append(self, text: str) -> None:
        if self._file is None:
            raise RuntimeError(f"Output artifact is not open: {self.path}")
        self._file.write(text)
        self._file.flush()
        self.characters_written += len(text)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> "MarkdownSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
