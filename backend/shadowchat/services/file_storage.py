# shadowchat/services/file_storage.py

from pathlib import Path

from shadowchat.utils.logger import get_logger

logger = get_logger(__name__)


class FileStorage:
    """Encrypted payloads of IMAGE / VIDEO / FILE messages, one blob per message id."""

    def __init__(self, root: str | Path):
        self.chat_files_dir = Path(root) / "chat_files"
        self.chat_files_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, message_id: int) -> Path:
        return self.chat_files_dir / f"{int(message_id)}.dat"

    def save_file(self, message_id: int, data: bytes) -> None:
        path = self._path(message_id)
        tmp = path.with_suffix(".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    def get_file(self, message_id: int) -> bytes | None:
        path = self._path(message_id)
        if not path.exists():
            return None
        return path.read_bytes()

    def has_file(self, message_id: int) -> bool:
        return self._path(message_id).exists()

    def delete_file(self, message_id: int) -> bool:
        path = self._path(message_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted file for message {message_id}")
        return True
