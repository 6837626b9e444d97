"""
Density clustering of infrastructure segments.

A small deterministic k-means over segment midpoints. No random seeding:
the same segments always give the same clusters.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from logging_config import get_logger

logger = get_logger(__name__)

EARTH_RADIUS_M = 6371008.8


@dataclass
class DensityCluster:
    center: Tuple[float, float]     # [lng, lat]
    density: int
    segment_indices: List[int]


def haversine_matrix(points: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """Pairwise great-circle distances (m) between ``points`` (n x 2) and ``centers`` (k x 2), [lng, lat] rows."""
    lng1 = np.radians(points[:, 0])[:, None]
    lat1 = np.radians(points[:, 1])[:, None]
    lng2 = np.radians(centers[:, 0])[None, :]
    lat2 = np.radians(centers[:, 1])[None, :]

    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0, None)))


def target_cluster_count(segment_count, min_clusters=3, max_clusters=8, segments_per_cluster=10):
    return min(max_clusters, max(min_clusters, math.ceil(segment_count / segments_per_cluster)))


def _initial_centers(midpoints: np.ndarray, k: int) -> np.ndarray:
    # Evenly spaced picks from the (lng, lat)-sorted midpoints
    order = np.lexsort((midpoints[:, 1], midpoints[:, 0]))
    ordered = midpoints[order]
    step = max(1, len(ordered) // k)
    picks = [min(i * step, len(ordered) - 1) for i in range(k)]
    return ordered[picks].copy()


def _assign(midpoints: np.ndarray, centers: np.ndarray) -> np.ndarray:
    # argmin returns the first minimum, so ties go to the lower center index
    return np.argmin(haversine_matrix(midpoints, centers), axis=1)


def identify_density_clusters(
    midpoints: Sequence[Sequence[float]],
    target_clusters: int = 6,
    min_clusters: int = 3,
    max_clusters: int = 8,
    max_iterations: int = 20,
    convergence_m: float = 50.0,
) -> List[DensityCluster]:
    """
    Group segment midpoints into density clusters.

    Args:
        midpoints: One [lng, lat] midpoint per segment
        target_clusters: Desired k, clamped to [min_clusters, max_clusters]
            and to the number of midpoints
        max_iterations: k-means rounds before giving up on convergence
        convergence_m: Stop once no center moved further than this

    Returns:
        Non-empty clusters sorted by descending density
    """
    if len(midpoints) == 0:
        return []

    points = np.asarray(midpoints, dtype=float)
    k = min(max(min_clusters, target_clusters), max_clusters, len(points))
    centers = _initial_centers(points, k)

    for iteration in range(max_iterations):
        labels = _assign(points, centers)
        new_centers = centers.copy()
        for ci in range(k):
            members = points[labels == ci]
            if len(members):
                new_centers[ci] = members.mean(axis=0)

        shifts = np.diag(haversine_matrix(new_centers, centers))
        centers = new_centers
        if np.all(shifts <= convergence_m):
            logger.debug(f"k-means converged after {iteration + 1} iterations (k={k})")
            break

    labels = _assign(points, centers)
    clusters = []
    for ci in range(k):
        indices = [int(i) for i in np.flatnonzero(labels == ci)]
        if indices:
            clusters.append(DensityCluster(
                center=(float(centers[ci][0]), float(centers[ci][1])),
                density=len(indices),
                segment_indices=indices,
            ))

    # Stable sort keeps center order among equal densities
    clusters.sort(key=lambda c: c.density, reverse=True)
    return clusters
