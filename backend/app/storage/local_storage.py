from pathlib import Path
from typing import Optional

from app.core.logging import get_logger

logger = get_logger("ledger.storage.local")


class LocalStorageService:
    """Directory-backed blob store with the same interface as CloudStorageService."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _full_path(self, path: str) -> Path:
        full = (self.base_dir / path).resolve()
        if self.base_dir.resolve() not in full.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return full

    def exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def read_bytes(self, path: str) -> Optional[bytes]:
        full = self._full_path(path)
        if not full.is_file():
            return None
        return full.read_bytes()

    def write_bytes(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        full = self._full_path(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        # Readers never see a half-written blob
        tmp = full.with_name(full.name + ".tmp")
        tmp.write_bytes(content)
        tmp.replace(full)
        logger.debug(f"Wrote {full} ({len(content)} bytes)")
        return path

    def list_paths(self, prefix: str) -> list[str]:
        root = self.base_dir / prefix
        search = root if root.is_dir() else root.parent
        if not search.exists():
            return []
        paths = []
        for item in search.rglob("*"):
            if item.is_file() and not item.name.endswith(".tmp"):
                rel = item.relative_to(self.base_dir).as_posix()
                if rel.startswith(prefix):
                    paths.append(rel)
        return sorted(paths)
