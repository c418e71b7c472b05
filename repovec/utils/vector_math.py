"""Vector helpers for embedding averaging and cosine similarity"""

import numpy as np


def average_embeddings(vectors: list[list[float]]) -> list[float]:
    """
    Elementwise arithmetic mean of equal-length vectors

    Raises:
        ValueError: If vectors is empty or the lengths differ
    """
    if not vectors:
        raise ValueError("Cannot average an empty list of embeddings")

    dimension = len(vectors[0])
    for vector in vectors:
        if len(vector) != dimension:
            raise ValueError(
                f"Cannot average embeddings of different lengths: {dimension} vs {len(vector)}"
            )

    if len(vectors) == 1:
        return list(vectors[0])

    return np.mean(np.asarray(vectors, dtype=np.float64), axis=0).tolist()


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm"""
    if len(a) != len(b):
        raise ValueError(f"Vector lengths differ: {len(a)} vs {len(b)}")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def embedding_matrix(vectors: list[list[float]], dimension: int) -> tuple[np.ndarray, np.ndarray]:
    """Stack vectors into a (n, dimension) matrix and compute row norms"""
    if not vectors:
        matrix = np.zeros((0, dimension), dtype=np.float64)
    else:
        matrix = np.asarray(vectors, dtype=np.float64)
    return matrix, np.linalg.norm(matrix, axis=1)


def cosine_scores(query: list[float], matrix: np.ndarray, norms: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of query against every row of matrix

    Rows or queries with zero norm score 0.0. Scores are clipped to [-1, 1].
    """
    q = np.asarray(query, dtype=np.float64)
    q_norm = float(np.linalg.norm(q))
    if matrix.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    if q_norm == 0.0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    denominators = norms * q_norm
    dots = matrix @ q
    scores = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denominators > 0
    scores[nonzero] = dots[nonzero] / denominators[nonzero]
    return np.clip(scores, -1.0, 1.0)
