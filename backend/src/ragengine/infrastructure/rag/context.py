#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Retrieval Context - 检索溯源上下文

调用方持有，引擎只追加写入：
- entries: {type, query, timestamp, status}
- references: {id, title, source, distance}
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DEFAULT_SOURCE = "Vector Knowledge Base"


@dataclass(frozen=True)
class ProvenanceEntry:
    type: str
    query: str
    timestamp: str
    status: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class Reference:
    id: str
    title: str
    source: str
    distance: float


@dataclass
class RetrievalContext:
    """检索溯源记录（只追加）"""
    entries: List[ProvenanceEntry] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)

    def record(self, type: str, query: str, status: str, detail: Optional[str] = None) -> ProvenanceEntry:
        entry = ProvenanceEntry(
            type=type,
            query=query,
            timestamp=datetime.now(tz=timezone.utc).isoformat(),
            status=status,
            detail=detail,
        )
        self.entries.append(entry)
        return entry

    def has_reference(self, doc_id: str) -> bool:
        return any(ref.id == doc_id for ref in self.references)

    def add_references(self, candidates) -> List[Reference]:
        """为检索结果追加引用，已引用过的id跳过"""
        added = []
        for index, doc in enumerate(candidates, start=1):
            if self.has_reference(doc.id):
                continue
            title = doc.metadata.get("title")
            source = doc.metadata.get("source")
            ref = Reference(
                id=doc.id,
                title=str(title) if title is not None else f"Document {index}",
                source=str(source) if source is not None else DEFAULT_SOURCE,
                distance=doc.distance,
            )
            self.references.append(ref)
            added.append(ref)
        return added

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [asdict(e) for e in self.entries],
            "references": [asdict(r) for r in self.references],
        }
