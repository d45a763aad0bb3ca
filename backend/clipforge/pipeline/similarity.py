"""Vector similarity helpers."""
from typing import List, Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_matrix(vectors: List[Sequence[float]]) -> np.ndarray:
    """Pairwise cosine similarity; zero vectors are similar to nothing."""
    if not vectors:
        return np.zeros((0, 0))
    mat = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(mat, axis=1, keepdims=True)
    safe = np.where(norms == 0, 1.0, norms)
    unit = mat / safe
    sims = unit @ unit.T
    zero = (norms[:, 0] == 0)
    sims[zero, :] = 0.0
    sims[:, zero] = 0.0
    return np.clip(sims, -1.0, 1.0)
