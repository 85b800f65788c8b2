"""Lightweight BM25 keyword index over vault items."""

from __future__ import annotations

import math
import re
from collections import Counter

from vaults.models import ItemRecord


class SearchIndex:
    """BM25 index keyed by item id. Rebuilds statistics lazily after changes."""

    def __init__(self, k1: float = 1.5, b: float = 0.75):
        self.k1 = k1
        self.b = b
        self._docs: dict[str, list[str]] = {}
        self._titles: dict[str, str] = {}
        self._snippets: dict[str, str] = {}
        self._idf: dict[str, float] = {}
        self._avg_doc_len = 0.0
        self._dirty = False

    def __len__(self) -> int:
        return len(self._docs)

    def index_item(self, item: ItemRecord) -> None:
        text = " ".join(filter(None, [item.title, item.content, item.summary or ""]))
        self._docs[item.id] = self._tokenize(text)
        self._titles[item.id] = item.title
        self._snippets[item.id] = item.content or item.summary or ""
        self._dirty = True

    def remove_item(self, item_id: str) -> None:
        if self._docs.pop(item_id, None) is not None:
            self._titles.pop(item_id, None)
            self._snippets.pop(item_id, None)
            self._dirty = True

    def search(self, query: str, top_k: int | None = None) -> list[tuple[str, float]]:
        """Return ranked (item_id, score) results."""
        if not self._docs:
            return []
        tokens = self._tokenize(query)
        if not tokens:
            return []
        if self._dirty:
            self._rebuild()

        scores = []
        for item_id, doc_tokens in self._docs.items():
            score = self._score(tokens, doc_tokens)
            if score > 0:
                scores.append((item_id, score))

        scores.sort(key=lambda pair: pair[1], reverse=True)
        if top_k is not None:
            return scores[:top_k]
        return scores

    def title(self, item_id: str) -> str:
        return self._titles.get(item_id, "")

    def snippet(self, item_id: str) -> str:
        return self._snippets.get(item_id, "")

    def _rebuild(self) -> None:
        doc_count = len(self._docs)
        lengths = [len(tokens) for tokens in self._docs.values()]
        self._avg_doc_len = sum(lengths) / doc_count if doc_count else 0.0
        df: Counter[str] = Counter()
        for tokens in self._docs.values():
            for token in set(tokens):
                df[token] += 1
        self._idf = {
            token: math.log(1 + (doc_count - freq + 0.5) / (freq + 0.5))
            for token, freq in df.items()
        }
        self._dirty = False

    def _score(self, query_tokens: list[str], doc_tokens: list[str]) -> float:
        tf = Counter(doc_tokens)
        doc_len = len(doc_tokens)
        score = 0.0
        for token in query_tokens:
            if token not in tf:
                continue
            idf = self._idf.get(token, 0.0)
            freq = tf[token]
            denom = freq + self.k1 * (1 - self.b + self.b * (doc_len / (self._avg_doc_len or 1.0)))
            score += idf * (freq * (self.k1 + 1)) / (denom or 1.0)
        return score

    @staticmethod
    def _tokenize(text: str) -> list[str]:
        return re.findall(r"\w+", text.lower())
