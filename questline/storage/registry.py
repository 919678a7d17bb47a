"""
Completed-quest registry
Ordered set of banked quest ids, persisted per account as a JSON list
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_QUOTED = re.compile(r'"([^"\\]+)"')


class CompletedQuestRegistry:
    """Banked quest ids for one account"""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path else None
        self._ids: list[str] = []
        self._index: set[str] = set()

    @classmethod
    def for_account(cls, registry_dir: str | Path, account: str) -> "CompletedQuestRegistry":
        filename = _UNSAFE.sub("_", account) or "default"
        registry = cls(Path(registry_dir) / f"{filename}.json")
        registry.load()
        return registry

    def __contains__(self, quest_id: str) -> bool:
        return quest_id in self._index

    def __len__(self) -> int:
        return len(self._ids)

    def contains(self, quest_id: str) -> bool:
        return quest_id in self._index

    @property
    def ids(self) -> list[str]:
        return list(self._ids)

    def add(self, quest_id: str) -> bool:
        """Bank one id and persist; returns False when it was already banked"""
        return bool(self.add_many([quest_id]))

    def add_many(self, quest_ids: Iterable[str]) -> list[str]:
        """Bank ids and persist once; returns the ids that were new"""
        added = []
        for quest_id in quest_ids:
            if quest_id in self._index:
                continue
            self._ids.append(quest_id)
            self._index.add(quest_id)
            added.append(quest_id)
        if added:
            self.save()
        return added

    def load(self) -> None:
        """Read banked ids from disk.

        A file that does not hold a JSON list is moved aside to `<name>.corrupt`
        before anything is saved. Ids still legible in a truncated list are kept
        and written back.
        """
        if not self.path or not self.path.exists():
            return
        with open(self.path) as f:
            text = f.read()
        try:
            data = json.loads(text)
        except ValueError as e:
            self._quarantine(f"unreadable: {e}")
            # a truncated list still names the ids written before the cut
            data = _QUOTED.findall(text) if text.lstrip().startswith("[") else []
        else:
            if not isinstance(data, list):
                self._quarantine("not a list")
                return
        for quest_id in data:
            if isinstance(quest_id, str) and quest_id not in self._index:
                self._ids.append(quest_id)
                self._index.add(quest_id)
        if self._ids and not self.path.exists():
            self.save()

    def _quarantine(self, reason: str) -> None:
        corrupt_path = self.path.with_suffix(self.path.suffix + ".corrupt")
        os.replace(self.path, corrupt_path)
        logger.error("Registry %s is %s; moved to %s", self.path, reason, corrupt_path)

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(self._ids, f)
        os.replace(tmp_path, self.path)
