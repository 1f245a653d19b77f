"""Vector and unit-quaternion helpers.

Vectors are numpy (3,) float64 arrays, quaternions are numpy (4,) arrays
in (w, x, y, z) order. Every function returns a new array and leaves its
arguments untouched; quaternion results are renormalized.
"""

import math
from typing import Sequence

import numpy as np

EPSILON = 1e-8

X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


def as_vec3(v: Sequence[float]) -> np.ndarray:
    return np.asarray(v, dtype=np.float64).reshape(3).copy()


def length(v: np.ndarray) -> float:
    return float(np.linalg.norm(v))


def length_sq(v: np.ndarray) -> float:
    return float(np.dot(v, v))


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector along v. A zero vector is returned unchanged."""
    n = np.linalg.norm(v)
    if n < EPSILON:
        return np.array(v, dtype=np.float64)
    return np.asarray(v, dtype=np.float64) / n


def lerp_vec(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    return a + (b - a) * t


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def midpoint(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return (np.asarray(a, dtype=np.float64) + np.asarray(b, dtype=np.float64)) * 0.5


# --- Quaternions (w, x, y, z) ---

def quat_identity() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


def quat(w: float, x: float, y: float, z: float) -> np.ndarray:
    return np.array([w, x, y, z], dtype=np.float64)


def quat_normalize(q: np.ndarray) -> np.ndarray:
    n = np.linalg.norm(q)
    if n < EPSILON:
        return quat_identity()
    return np.asarray(q, dtype=np.float64) / n


def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product q1 * q2 (q2 applied first)."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return quat_normalize(np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2
    ]))


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def quat_inverse(q: np.ndarray) -> np.ndarray:
    """Inverse of a unit quaternion."""
    return quat_conjugate(quat_normalize(q))


def quat_dot(q1: np.ndarray, q2: np.ndarray) -> float:
    return float(np.dot(q1, q2))


def quat_slerp(q1: np.ndarray, q2: np.ndarray, t: float) -> np.ndarray:
    """Spherical interpolation from q1 toward q2 along the shortest path."""
    q1 = quat_normalize(q1)
    q2 = quat_normalize(q2)
    dot = float(np.dot(q1, q2))

    if dot < 0.0:
        q2 = -q2
        dot = -dot

    if dot > 0.9995:
        return quat_normalize(q1 + t * (q2 - q1))

    theta_0 = math.acos(min(dot, 1.0))
    sin_theta_0 = math.sin(theta_0)
    theta = theta_0 * t
    s0 = math.cos(theta) - dot * math.sin(theta) / sin_theta_0
    s1 = math.sin(theta) / sin_theta_0
    return quat_normalize(s0 * q1 + s1 * q2)


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """Create quaternion from axis and angle (radians)."""
    axis = normalize(axis)
    if length_sq(axis) < EPSILON:
        return quat_identity()
    half_angle = angle / 2
    s = math.sin(half_angle)
    return quat_normalize(np.array([math.cos(half_angle), axis[0] * s, axis[1] * s, axis[2] * s]))


def quat_from_unit_vectors(v_from: np.ndarray, v_to: np.ndarray) -> np.ndarray:
    """Minimal rotation carrying direction v_from onto v_to.

    Opposite vectors get a 180 degree turn about an axis perpendicular
    to v_from (X x v_from, or Y x v_from when that degenerates).
    """
    v1 = normalize(v_from)
    v2 = normalize(v_to)
    r = float(np.dot(v1, v2)) + 1.0

    if r < 1e-6:
        axis = np.cross(X_AXIS, v1)
        if length_sq(axis) < 1e-6:
            axis = np.cross(Y_AXIS, v1)
        axis = normalize(axis)
        return quat_normalize(np.array([0.0, axis[0], axis[1], axis[2]]))

    cross = np.cross(v1, v2)
    return quat_normalize(np.array([r, cross[0], cross[1], cross[2]]))


def quat_from_basis(right: np.ndarray, up: np.ndarray, forward: np.ndarray) -> np.ndarray:
    """Rotation whose matrix columns are (right, up, forward)."""
    m00, m01, m02 = right[0], up[0], forward[0]
    m10, m11, m12 = right[1], up[1], forward[1]
    m20, m21, m22 = right[2], up[2], forward[2]
    trace = m00 + m11 + m22

    if trace > 0:
        s = 0.5 / math.sqrt(trace + 1.0)
        w = 0.25 / s
        x = (m21 - m12) * s
        y = (m02 - m20) * s
        z = (m10 - m01) * s
    elif m00 > m11 and m00 > m22:
        s = 2.0 * math.sqrt(max(1.0 + m00 - m11 - m22, EPSILON))
        w = (m21 - m12) / s
        x = 0.25 * s
        y = (m01 + m10) / s
        z = (m02 + m20) / s
    elif m11 > m22:
        s = 2.0 * math.sqrt(max(1.0 + m11 - m00 - m22, EPSILON))
        w = (m02 - m20) / s
        x = (m01 + m10) / s
        y = 0.25 * s
        z = (m12 + m21) / s
    else:
        s = 2.0 * math.sqrt(max(1.0 + m22 - m00 - m11, EPSILON))
        w = (m10 - m01) / s
        x = (m02 + m20) / s
        y = (m12 + m21) / s
        z = 0.25 * s

    return quat_normalize(np.array([w, x, y, z]))


def quat_to_matrix(q: np.ndarray) -> np.ndarray:
    """3x3 rotation matrix of a unit quaternion."""
    w, x, y, z = quat_normalize(q)
    return np.array([
        [1 - 2*(y*y + z*z), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x*x + z*z), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x*x + y*y)],
    ])


def quat_rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    return quat_to_matrix(q) @ np.asarray(v, dtype=np.float64)


def quat_angle(q1: np.ndarray, q2: np.ndarray) -> float:
    """Angle (radians) of the rotation taking q1 to q2, ignoring sign."""
    dot = abs(quat_dot(quat_normalize(q1), quat_normalize(q2)))
    return 2.0 * math.acos(min(dot, 1.0))


def quat_rotation_angle(q: np.ndarray) -> float:
    """Rotation angle encoded by q, 2*acos(w) with w clamped."""
    w = max(-1.0, min(1.0, float(quat_normalize(q)[0])))
    return 2.0 * math.acos(w)
