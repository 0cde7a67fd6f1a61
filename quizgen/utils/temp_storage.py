import os
import tempfile
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from quizgen.schemas import UploadedDocument

logger = logging.getLogger(__name__)


class TemporaryUploadStorage:
    """Backs an uploaded document with a temporary file for the lifetime of one run"""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory

    @contextmanager
    def stage(self, document: UploadedDocument) -> Iterator[Path]:
        suffix = os.path.splitext(document.filename or "")[1]
        with tempfile.NamedTemporaryFile(delete=False, suffix=suffix, dir=self.directory) as tmp:
            tmp.write(document.content)
            tmp_path = tmp.name

        try:
            yield Path(tmp_path)
        finally:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.error(f"Error deleting temp file: {str(e)}")
