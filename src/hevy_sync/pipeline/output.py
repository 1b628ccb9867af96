"""JSON table sinks for imported entities.

Each entity type lands in its own ``<name>.json`` file under the output
directory, holding a list of rows keyed by ``id``. Re-importing a row
replaces it in place so repeated runs stay idempotent.
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from hevy_sync.models.sink import Row


class JSONTableSink:
    """
    Table of rows persisted as a JSON array.

    Rows are kept in first-seen order; upserting an existing id replaces the
    row without moving it. Every mutation rewrites the file.
    """

    def __init__(self, path: Path, key: str = "id"):
        self.path = Path(path)
        self.key = key
        self._rows: Optional[Dict[str, Row]] = None

    @property
    def name(self) -> str:
        return self.path.stem

    def load(self) -> Dict[str, Row]:
        if self._rows is None:
            self._rows = {}
            if self.path.exists():
                with open(self.path, 'r', encoding='utf-8') as f:
                    for row in json.load(f):
                        self._rows[str(row[self.key])] = row
        return self._rows

    def upsert(self, rows: List[Row]) -> None:
        table = self.load()
        for row in rows:
            table[str(row[self.key])] = row
        self.save()

    def delete_by_ids(self, ids: Iterable[Any]) -> None:
        table = self.load()
        for entity_id in ids:
            table.pop(str(entity_id), None)
        self.save()

    def clear(self) -> None:
        self._rows = {}
        self.save()

    def count(self) -> int:
        return len(self.load())

    def rows(self) -> List[Row]:
        return list(self.load().values())

    def save(self) -> None:
        """
        Write the table to disk.

        Creates parent directories if they don't exist. Uses 2-space
        indentation for readability.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(self.rows(), f, indent=2, ensure_ascii=False)


def sink_for(output_directory: Path, name: str) -> JSONTableSink:
    """Table sink writing output_directory/<name>.json."""
    return JSONTableSink(Path(output_directory) / f"{name}.json")
