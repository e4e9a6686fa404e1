"""Source document reader for markdown and PDF files.

Handles:
- Folder discovery (non-recursive, .md and .pdf)
- YAML frontmatter parsing and removal
- PDF text extraction
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml
from pypdf import PdfReader
from pypdf.errors import PdfReadError
import structlog

from ragtutor import config
from ragtutor.errors import InvalidConfiguration, SourceReadError

logger = structlog.get_logger()

SUPPORTED_SUFFIXES = (".md", ".pdf")


@dataclass
class SourceDocument:
    """Text of one readable source file."""

    path: Path
    text: str
    frontmatter: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def title(self) -> str:
        title = self.frontmatter.get("title")
        return str(title) if title else self.name

    def as_indexed_text(self) -> str:
        """Text handed to the chunker, headed by the document title."""
        return f"# {self.title}\n{self.text}"


class SourceReader:
    """Reads the markdown and PDF files of a single folder."""

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(
        r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL | re.MULTILINE
    )

    def __init__(self, skip_prefix: str = None):
        """Initialize the reader.

        Args:
            skip_prefix: File name prefix of generated artifacts to ignore
                (default from config.OUTPUT_PREFIX)
        """
        self.skip_prefix = config.OUTPUT_PREFIX if skip_prefix is None else skip_prefix

    def discover(self, folder: Path) -> List[Path]:
        """List readable source files in ``folder``, sorted by name.

        Raises:
            InvalidConfiguration: If the folder does not exist
        """
        folder = Path(folder)
        if not folder.is_dir():
            raise InvalidConfiguration(f"Source folder not found: {folder}")

        files = sorted(
            p
            for p in folder.iterdir()
            if p.is_file()
            and p.suffix.lower() in SUPPORTED_SUFFIXES
            and not (self.skip_prefix and p.name.startswith(self.skip_prefix))
        )

        logger.info("source_files_discovered", count=len(files), folder=str(folder))
        return files

    def read(self, path: Path) -> SourceDocument:
        """Read one source file.

        Raises:
            SourceReadError: If the file cannot be read or decoded
        """
        path = Path(path)
        try:
            if path.suffix.lower() == ".pdf":
                document = SourceDocument(path=path, text=self._read_pdf(path))
            else:
                content = path.read_text(encoding="utf-8")
                frontmatter, text = self._parse_frontmatter(content)
                document = SourceDocument(path=path, text=text, frontmatter=frontmatter)
        except (OSError, UnicodeDecodeError, PdfReadError) as e:
            logger.error("source_read_failed", path=str(path), error=str(e))
            raise SourceReadError(f"Could not read {path.name}: {e}", path) from e

        logger.info(
            "source_read",
            path=str(path),
            has_frontmatter=bool(document.frontmatter),
            content_length=len(document.text),
        )
        return document

    def _read_pdf(self, path: Path) -> str:
        reader = PdfReader(path)
        pages = []
        for page in reader.pages:
            text = page.extract_text() or ""
            if text.strip():
                pages.append(text)
        return "\n".join(pages)

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = {}

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end() :]
