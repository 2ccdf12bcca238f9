import json
from pathlib import Path
from typing import Dict, Iterable, Set


class JsonlStorageManager:
    """JSONL snapshot of crawl output; records already present (by id field) are skipped."""

    def __init__(self, output_path: str = "listings.jsonl", id_field: str = "place_id") -> None:
        self.path = Path(output_path)
        self.id_field = id_field
        if not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record_id(self, record: Dict) -> str:
        value = record.get(self.id_field)
        if value:
            return str(value)
        # Records without an id fall back to their content.
        return json.dumps(record, ensure_ascii=False, sort_keys=True)

    def load_existing_ids(self) -> Set[str]:
        if not self.path.exists():
            return set()

        ids: Set[str] = set()
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                ids.add(self.record_id(data))
        return ids

    def append(self, records: Iterable[Dict]) -> int:
        """Append unseen records and return how many were written."""
        existing = self.load_existing_ids()
        written = 0
        with self.path.open("a", encoding="utf-8") as f:
            for record in records:
                record_id = self.record_id(record)
                if record_id in existing:
                    continue
                existing.add(record_id)
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
                written += 1
        return written
