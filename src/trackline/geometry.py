"""
TrackLine Geometry - Planar Projective Helpers

Small, allocation-light helpers shared by the motion estimator and the
object tracker:

- Point / bounding box / homography type aliases
- Closed-form 3x3 inversion (adjugate / determinant)
- Homogeneous point application with a near-zero w guard
- Rectangle clipping against frame bounds

Convention: a homography H stored for frame N maps CURRENT-frame pixels
into REFERENCE-frame pixels:

    p_ref = H * p_current
    p_current = H^-1 * p_ref
"""

from typing import Optional, Tuple, Sequence, List

import numpy as np


Point2D = Tuple[float, float]
BBox = Tuple[float, float, float, float]  # (x, y, width, height)
Rect = Tuple[int, int, int, int]          # (x1, y1, x2, y2), exclusive end

SINGULAR_EPSILON = 1e-10


def identity_homography() -> np.ndarray:
    """Fresh 3x3 identity (float64)."""
    return np.eye(3, dtype=np.float64)


def as_homography(values) -> np.ndarray:
    """Coerce nested sequences / arrays into a 3x3 float64 matrix."""
    H = np.asarray(values, dtype=np.float64)
    if H.shape != (3, 3):
        raise ValueError(f"Homography must be 3x3, got shape {H.shape}")
    return H


def determinant(H: np.ndarray) -> float:
    """Cofactor expansion along the first row."""
    return float(
        H[0, 0] * (H[1, 1] * H[2, 2] - H[1, 2] * H[2, 1])
        - H[0, 1] * (H[1, 0] * H[2, 2] - H[1, 2] * H[2, 0])
        + H[0, 2] * (H[1, 0] * H[2, 1] - H[1, 1] * H[2, 0])
    )


def is_well_formed(H: Optional[np.ndarray], epsilon: float = SINGULAR_EPSILON) -> bool:
    """True for a finite 3x3 matrix with |det| > epsilon."""
    if H is None:
        return False
    H = np.asarray(H)
    if H.shape != (3, 3) or not np.all(np.isfinite(H)):
        return False
    return abs(determinant(H)) > epsilon


def invert_homography(H: np.ndarray, epsilon: float = SINGULAR_EPSILON) -> Optional[np.ndarray]:
    """
    Invert a 3x3 matrix with the adjugate method.

    H^-1 = adj(H) / det(H)

    Returns:
        Inverse matrix, or None when |det(H)| < epsilon (singular)
    """
    det = determinant(H)
    if abs(det) < epsilon:
        return None

    inv_det = 1.0 / det
    return np.array([
        [
            inv_det * (H[1, 1] * H[2, 2] - H[1, 2] * H[2, 1]),
            inv_det * (H[0, 2] * H[2, 1] - H[0, 1] * H[2, 2]),
            inv_det * (H[0, 1] * H[1, 2] - H[0, 2] * H[1, 1]),
        ],
        [
            inv_det * (H[1, 2] * H[2, 0] - H[1, 0] * H[2, 2]),
            inv_det * (H[0, 0] * H[2, 2] - H[0, 2] * H[2, 0]),
            inv_det * (H[0, 2] * H[1, 0] - H[0, 0] * H[1, 2]),
        ],
        [
            inv_det * (H[1, 0] * H[2, 1] - H[1, 1] * H[2, 0]),
            inv_det * (H[0, 1] * H[2, 0] - H[0, 0] * H[2, 1]),
            inv_det * (H[0, 0] * H[1, 1] - H[0, 1] * H[1, 0]),
        ],
    ], dtype=np.float64)


def apply_homography(point: Point2D, H: np.ndarray, epsilon: float = SINGULAR_EPSILON) -> Point2D:
    """
    Apply a projective transform to a single point.

        [x']   [h11 h12 h13]   [x]
        [y'] = [h21 h22 h23] * [y]
        [w']   [h31 h32 h33]   [1]

    Returns (x'/w', y'/w'), or the input point itself when |w'| < epsilon.
    """
    x, y = point
    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    if abs(w) < epsilon:
        return point

    x_prime = (H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w
    y_prime = (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w
    return (float(x_prime), float(y_prime))


def apply_homography_to_points(
    points: Sequence[Point2D],
    H: np.ndarray,
    epsilon: float = SINGULAR_EPSILON
) -> List[Point2D]:
    """Apply H to every point; output length always equals input length."""
    return [apply_homography(p, H, epsilon) for p in points]


def clip_rect(x1: int, y1: int, x2: int, y2: int, width: int, height: int) -> Rect:
    """Intersect (x1, y1, x2, y2) with the [0, width) x [0, height) frame."""
    x1 = max(0, min(x1, width))
    y1 = max(0, min(y1, height))
    x2 = max(0, min(x2, width))
    y2 = max(0, min(y2, height))
    return x1, y1, max(x1, x2), max(y1, y2)


def bbox_center(bbox: BBox) -> Point2D:
    x, y, w, h = bbox
    return (x + w / 2.0, y + h / 2.0)
