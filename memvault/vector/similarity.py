"""
Vector math used by the in-memory similarity engine.

Pure functions over sequences of floats or numpy arrays; no state.
"""

from typing import List, Sequence, Tuple, Union

import numpy as np

from ..core.errors import DimensionMismatchError

Vector = Union[Sequence[float], np.ndarray]


def _as_array(v: Vector) -> np.ndarray:
    return np.asarray(v, dtype=np.float64)


def _check_dimensions(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(a.shape[0], b.shape[0])


def cosine_similarity(a: Vector, b: Vector) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm."""
    a_arr = _as_array(a)
    b_arr = _as_array(b)
    _check_dimensions(a_arr, b_arr)

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a_arr, b_arr) / (norm_a * norm_b))
    # Rounding can push parallel vectors slightly past the bounds
    return max(-1.0, min(1.0, similarity))


def euclidean_distance(a: Vector, b: Vector) -> float:
    a_arr = _as_array(a)
    b_arr = _as_array(b)
    _check_dimensions(a_arr, b_arr)
    return float(np.linalg.norm(a_arr - b_arr))


def normalize(v: Vector) -> List[float]:
    """Scale to unit length. A zero vector is returned unchanged."""
    arr = _as_array(v)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return list(v)
    return (arr / norm).tolist()


def k_nearest(query: Vector, candidates: Sequence[Vector], k: int,
              metric: str = "cosine") -> List[Tuple[int, float]]:
    """
    Score every candidate against the query and keep the best k.

    Args:
        query: Query vector
        candidates: Candidate vectors, in store order
        k: Number of results to keep
        metric: "cosine" (higher is better) or "euclidean" (scored as the
            negative distance so higher is still better)

    Returns:
        (candidate index, score) pairs sorted by descending score. Equal
        scores keep their original candidate order.
    """
    if metric == "cosine":
        scorer = cosine_similarity
    elif metric == "euclidean":
        def scorer(a, b):
            return -euclidean_distance(a, b)
    else:
        raise ValueError(f"Unknown metric: {metric}. Supported: 'cosine', 'euclidean'")

    scores = [(index, scorer(query, candidate)) for index, candidate in enumerate(candidates)]
    # sorted() is stable, which keeps ties in candidate order
    scores = sorted(scores, key=lambda item: item[1], reverse=True)
    return scores[:max(k, 0)]
