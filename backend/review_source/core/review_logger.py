"""
Review logger - persists every model request/response pair as JSON
"""
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger


# <timestamp>[_<sequence>]
LOG_NAME = re.compile(r"^(.*?)(?:_(\d+))?$")


class ReviewLogger:
    """
    Request/response log sink

    One pretty-printed JSON file per completed model call, named after the
    local time (YYYY-MM-DD_HH-mm-ss.json). Only the newest `max_files` logs
    are kept.
    """

    def __init__(self, log_dir: str = ".logs", max_files: int = 10):
        self.log_dir = Path(log_dir)
        self.max_files = max_files

    def log(self, record: Dict[str, Any]) -> Optional[str]:
        """
        Write one record

        Args:
            record: JSON-serializable data (request payload and response)

        Returns:
            file name written, or None when logging failed
        """
        return self._write(self._generate_filename(), record)

    def latest_log_path(self) -> Optional[Path]:
        """Path of the newest log file"""
        files = self._log_files()
        return files[-1] if files else None

    def recent_logs(self, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Most recent log files, newest first

        Args:
            limit: number of entries

        Returns:
            list of {file, path, modified}
        """
        files = list(reversed(self._log_files()))[:limit]

        return [
            {
                "file": file.name,
                "path": str(file),
                "modified": datetime.fromtimestamp(file.stat().st_mtime).isoformat()
            }
            for file in files
        ]

    def read_log(self, file_name: str) -> Optional[Dict[str, Any]]:
        """Load one log by file name; names outside the log dir are rejected"""
        file_path = self.log_dir / file_name
        if file_path.parent.resolve() != self.log_dir.resolve() or not file_path.is_file():
            return None

        with open(file_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _write(self, file_name: str, record: Dict[str, Any]) -> Optional[str]:
        try:
            text = json.dumps(record, ensure_ascii=False, indent=2)

            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._cleanup_old_logs()

            file_path = self._unique_path(file_name)
            file_path.write_text(text, encoding='utf-8')

            logger.debug(f"💾 Log written to: {file_path}")
            return file_path.name
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write log: {e}")
            return None

    def _cleanup_old_logs(self):
        """Remove the oldest logs so the next write stays within max_files"""
        files = self._log_files()
        excess = len(files) - self.max_files + 1
        for file_path in files[:max(excess, 0)]:
            try:
                file_path.unlink()
                logger.debug(f"Removed old log: {file_path}")
            except OSError as e:
                logger.error(f"Failed to remove old log {file_path}: {e}")

    def _log_files(self) -> List[Path]:
        """Log files, oldest first (timestamp name, then sequence suffix)"""
        if not self.log_dir.is_dir():
            return []
        return sorted(self.log_dir.glob("*.json"), key=_log_order)

    def _unique_path(self, file_name: str) -> Path:
        """
        Same-second logs get an increasing `_N` suffix; a suffix is never
        reused while an older log of that second remains
        """
        base = Path(file_name).stem
        taken = [
            _log_order(path)[1]
            for path in self.log_dir.glob(f"{base}*.json")
            if _log_order(path)[0] == base
        ]
        if not taken:
            return self.log_dir / file_name
        return self.log_dir / f"{base}_{max(taken) + 1}.json"

    @staticmethod
    def _generate_filename() -> str:
        return datetime.now().strftime("%Y-%m-%d_%H-%M-%S") + ".json"


def _log_order(path: Path) -> Tuple[str, int]:
    """(timestamp, sequence) of a log file name"""
    match = LOG_NAME.match(path.stem)
    return match.group(1), int(match.group(2) or 0)
