import json
import hashlib
import os
import portalocker
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

GENESIS_HASH = "0" * 64


class AuditLogger:
    """
    Append-only JSONL trail of fills, risk decisions and kill-switch events.
    Each line carries the hash of the previous one; the file is locked while
    the tail hash is read and the new line appended.
    """
    def __init__(self, filepath: str = "logs/audit_live.jsonl", mode: str = "PAPER"):
        self.filepath = Path(filepath)
        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        self.last_hash = self._get_last_hash()

        self.log_event("AUDIT_FILE_OPENED", {
            "mode": mode,
            "path": str(self.filepath),
            "pid": os.getpid()
        })

    def _get_last_hash(self, f_handle: Optional[Any] = None) -> str:
        if f_handle is None:
            if not self.filepath.exists():
                return GENESIS_HASH
            with open(self.filepath, 'rb') as f:
                return self._read_tail_hash(f)
        return self._read_tail_hash(f_handle)

    def _read_tail_hash(self, f: Any) -> str:
        f.seek(0, os.SEEK_END)
        if f.tell() == 0:
            return GENESIS_HASH

        # Read last 4KB
        f.seek(max(0, f.tell() - 4096), os.SEEK_SET)
        lines = f.readlines()
        for line in reversed(lines):
            line = line.strip()
            if not line:
                continue
            try:
                return json.loads(line.decode('utf-8')).get("hash", GENESIS_HASH)
            except (ValueError, UnicodeDecodeError):
                # partial first line of the tail window
                continue
        return GENESIS_HASH

    def log_event(self, event_type: str, payload: Dict[str, Any]):
        event_id = str(uuid4())
        timestamp = datetime.now(timezone.utc).isoformat()

        # Lock before reading the tail so concurrent writers chain correctly.
        with portalocker.Lock(self.filepath, mode='a+b', timeout=5) as f:
            current_tail_hash = self._get_last_hash(f)

            event_data = {
                "event_id": event_id,
                "timestamp": timestamp,
                "event_type": event_type,
                "payload": payload,
                "prev_hash": current_tail_hash
            }

            canonical_str = json.dumps(event_data, sort_keys=True, separators=(',', ':'), default=str)
            current_hash = hashlib.sha256(canonical_str.encode('utf-8')).hexdigest()
            event_data["hash"] = current_hash

            line = json.dumps(event_data, default=str) + "\n"
            f.seek(0, os.SEEK_END)
            f.write(line.encode('utf-8'))
            f.flush()
            os.fsync(f.fileno())

            self.last_hash = current_hash

    def verify_chain(self) -> Tuple[bool, List[str]]:
        return verify_audit_hash_chain(self.filepath)


def verify_audit_hash_chain(file_path) -> Tuple[bool, List[str]]:
    if not Path(file_path).exists():
        return False, ["File not found"]

    errors = []
    prev_hash = GENESIS_HASH
    with open(file_path, 'r') as f:
        for i, line in enumerate(f):
            try:
                data = json.loads(line)
            except ValueError as e:
                errors.append(f"Line {i}: JSON Error: {e}")
                continue

            if data.get("prev_hash") != prev_hash:
                errors.append(f"Line {i}: Hash chain break. Expected {prev_hash}, got {data.get('prev_hash')}")

            hash_to_verify = data.pop("hash", None)
            canonical_str = json.dumps(data, sort_keys=True, separators=(',', ':'))
            recalculated = hashlib.sha256(canonical_str.encode('utf-8')).hexdigest()
            if recalculated != hash_to_verify:
                errors.append(f"Line {i}: Data tamper detected. Hash mismatch.")

            prev_hash = hash_to_verify
    return not errors, errors
