"""
Local blob store: opaque locations mapped onto a directory tree.
"""
import shutil
from pathlib import Path


class LocalBlobStore:
    """Blob locations are relative paths like 'raw/abc.mp4' or 'encoded/<video_id>/480p.mp4'"""

    def __init__(self, root: Path, base_url: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def path(self, location: str) -> Path:
        resolved = (self.root / location).resolve()
        if self.root.resolve() not in resolved.parents and resolved != self.root.resolve():
            raise ValueError(f"Blob location escapes store root: {location}")
        return resolved

    def url_for(self, location: str) -> str:
        return f"{self.base_url}/{location.lstrip('/')}"

    def exists(self, location: str) -> bool:
        return self.path(location).exists()

    def prepare(self, location: str) -> Path:
        """Path for a new blob, parent directories created"""
        path = self.path(location)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def put_text(self, location: str, text: str) -> str:
        self.prepare(location).write_text(text)
        return location

    def copy(self, source: str, destination: str) -> str:
        shutil.copyfile(self.path(source), self.prepare(destination))
        return destination
