from __future__ import annotations
from typing import Optional, Tuple
from pathlib import Path
import json
import re

_default_ontology = {
    "labels": [
        "front bumper", "rear bumper", "hood", "trunk lid", "grille",
        "fender", "door", "mirror", "windshield", "rear window",
        "headlight", "taillight", "roof", "quarter panel", "tailgate",
        "rocker panel", "wheel", "inner trunk",
    ],
    "synonyms": {
        "bonnet": "hood",
        "boot": "trunk lid",
        "trunk": "trunk lid",
        "tail light": "taillight",
        "tail lamp": "taillight",
        "head light": "headlight",
        "head lamp": "headlight",
        "windscreen": "windshield",
        "wing": "fender",
        "rear fender": "quarter panel",
        "cargo area": "inner trunk",
    },
}

_side_words = ["left", "right", "lhs", "rhs"]
_position_words = ["front", "rear", "back"]


def load_ontology(path: Optional[str]) -> dict:
    if not path:
        return _default_ontology
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"ontology file not found: {path}")
    return json.loads(p.read_text())


def _norm(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").strip().lower())


def extract_side(name: str) -> Optional[str]:
    tokens = _norm(name).split()
    if "left" in tokens or "lhs" in tokens:
        return "left"
    if "right" in tokens or "rhs" in tokens:
        return "right"
    return None


def canonicalize_label(raw_name: str, ontology: dict) -> str:
    name_n = _norm(raw_name)
    base = " ".join(t for t in name_n.split() if t not in _side_words)
    syn = ontology.get("synonyms", {})
    if base in syn:
        return syn[base]
    labels = [_norm(l) for l in ontology.get("labels", [])]
    if base in labels:
        return base
    stripped = " ".join(t for t in base.split() if t not in _position_words)
    if stripped in syn:
        return syn[stripped]

    # choose best by simple token overlap
    def score(label: str) -> float:
        t1 = set(base.split())
        t2 = set(label.split())
        if not t1 or not t2:
            return 0.0
        return len(t1 & t2) / len(t1 | t2)

    best = None
    best_sc = 0.0
    for lab in labels:
        sc = score(lab)
        if sc > best_sc:
            best_sc = sc
            best = lab
    return best if best else base


def canonicalize_name_and_side(name: str, ontology: dict) -> Tuple[str, Optional[str]]:
    return canonicalize_label(name, ontology), extract_side(name)


def canonical_part_key(name: str, ontology: Optional[dict] = None) -> Tuple[str, Optional[str]]:
    """``(canonical label, side)`` for a raw part name."""
    return canonicalize_name_and_side(name, ontology or _default_ontology)
