import json
import re
from dataclasses import dataclass
from typing import Iterable, List, Pattern


# Anchor label next to the area to mask, e.g. "Lv.80"
DEFAULT_LABEL_PATTERNS = [
    r"^[A-Za-z]{1,4}\.\d+$",
]


@dataclass
class PatternSet:
    patterns: List[Pattern]

    @classmethod
    def from_strings(cls, pats: Iterable[str]):
        return cls(patterns=[re.compile(p) for p in pats])

    @classmethod
    def default(cls):
        return cls.from_strings(DEFAULT_LABEL_PATTERNS)

    @classmethod
    def from_file(cls, path: str):
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict):
            pats = data.get('patterns', [])
        else:
            pats = data
        return cls.from_strings(pats)

    def matches(self, word: str) -> bool:
        # OCR sometimes leaves stray punctuation around the tag
        w = word.strip().strip(',:;')
        return any(p.search(w) for p in self.patterns)

    def find_matches(self, text: str):
        """(pattern, token) pairs for every whitespace-separated token that matches."""
        matches = []
        for p in self.patterns:
            for tok in text.split():
                if p.search(tok.strip(',:;')):
                    matches.append((p, tok))
        return matches
