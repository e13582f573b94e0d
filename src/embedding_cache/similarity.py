"""
Vector similarity helpers.

Used by the SQLite backend to answer similarity searches locally and by
relevant-text extraction to rank chunks against a query.
"""

import math
from typing import List, Sequence


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.
    
    Args:
        vec_a: First vector
        vec_b: Second vector
        
    Returns:
        Cosine similarity score between -1 and 1
        
    Raises:
        ValueError: If vectors have different dimensions or are empty
    """
    if not vec_a or not vec_b:
        raise ValueError("Vectors cannot be empty")
    
    if len(vec_a) != len(vec_b):
        raise ValueError(f"Vector dimensions must match: {len(vec_a)} != {len(vec_b)}")
    
    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(sum(a * a for a in vec_a))
    magnitude_b = math.sqrt(sum(b * b for b in vec_b))
    
    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0
    
    return dot_product / (magnitude_a * magnitude_b)


def top_k_indices(scores: List[float], k: int) -> List[int]:
    """
    Indices of the k highest scores, best first.

    Ties keep the earlier index first.
    """
    if k <= 0:
        return []
    ranked = sorted(range(len(scores)), key=lambda i: (-scores[i], i))
    return ranked[:k]
