"""
Косинусное ранжирование монологов по вектору запроса.

Используется как путь поиска для баз без pgvector (SQLite в тестах и
локальной разработке). Семантика совпадает с pgvector:
cosine distance d в [0, 2], similarity = 1 - d.
"""
from typing import Iterable, List, Sequence, Tuple, TypeVar

import numpy as np

T = TypeVar("T")

DEFAULT_LIMIT = 10
DEFAULT_MIN_SIMILARITY = 0.5


def validate_search_args(limit: int, min_similarity: float) -> None:
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")
    if not 0.0 <= min_similarity <= 1.0:
        raise ValueError(f"min_similarity must be in [0, 1], got {min_similarity}")


def as_query_array(query_vector: Sequence[float]) -> np.ndarray:
    query = np.asarray(query_vector, dtype=np.float64)
    if query.ndim != 1 or query.size == 0:
        raise ValueError("query_vector must be a non-empty 1-D vector")
    if not np.all(np.isfinite(query)):
        raise ValueError("query_vector contains non-finite values")
    if np.linalg.norm(query) == 0:
        raise ValueError("query_vector must not be a zero vector")
    return query


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Косинусное сходство двух векторов одинаковой размерности"""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape[0]} != {vb.shape[0]}")
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def rank_by_cosine(
    query_vector: Sequence[float],
    candidates: Iterable[Tuple[T, Sequence[float]]],
    limit: int = DEFAULT_LIMIT,
    min_similarity: float = DEFAULT_MIN_SIMILARITY,
) -> List[Tuple[T, float]]:
    """
    Ранжирует кандидатов по косинусному сходству с запросом.

    Args:
        query_vector: Вектор запроса
        candidates: Пары (объект, вектор)
        limit: Максимум результатов
        min_similarity: Порог сходства в [0, 1]

    Returns:
        List[Tuple[T, float]]: Пары (объект, сходство) по убыванию сходства
    """
    validate_search_args(limit, min_similarity)
    query = as_query_array(query_vector)

    items = []
    vectors = []
    for item, vector in candidates:
        items.append(item)
        vectors.append(vector)
    if not items:
        return []

    matrix = np.asarray(vectors, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"embedding dimension mismatch: query has {query.shape[0]} dimensions")

    norms = np.linalg.norm(matrix, axis=1)
    valid = norms > 0  # нулевые векторы не имеют направления
    similarities = np.zeros(len(items), dtype=np.float64)
    similarities[valid] = (matrix[valid] @ query) / (norms[valid] * np.linalg.norm(query))
    similarities = np.clip(similarities, -1.0, 1.0)

    order = np.argsort(-similarities, kind="stable")
    results = []
    for idx in order:
        similarity = float(similarities[idx])
        if not valid[idx] or similarity < min_similarity:
            continue
        results.append((items[idx], similarity))
        if len(results) >= limit:
            break
    return results
