"""SO(3) and so(3) Lie group operations in JAX.

Rotations are stored as (..., 3, 3) matrices. Two tangent parameterizations
are used by the rest of the package: the rotation vector (axis * angle) of
the standard exponential map, and the quaternion logarithm (axis * angle / 2)
used by the pseudo se(3) encoding. All functions are pure, batchable over
leading axes and JIT-able.
"""

import jax
import jax.numpy as jnp

Array = jax.Array

_SMALL_ANGLE = 1e-8


def safe_norm(v: Array, keepdims: bool = False) -> Array:
    """Euclidean norm over the last axis whose gradient at zero is zero instead of NaN."""
    squared = jnp.sum(v * v, axis=-1, keepdims=keepdims)
    safe = jnp.where(squared > 0.0, squared, 1.0)
    return jnp.where(squared > 0.0, jnp.sqrt(safe), 0.0)


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: rotation vector to rotation matrix (Rodrigues).

    Args:
        log_r: (..., 3) array of rotation vectors

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    angle = safe_norm(log_r, keepdims=True)
    small = angle < _SMALL_ANGLE
    safe_angle = jnp.where(small, 1.0, angle)

    # sin(x)/x and (1 - cos(x))/x^2 with their Taylor limits at zero
    a = jnp.where(small, 1.0 - angle**2 / 6.0, jnp.sin(safe_angle) / safe_angle)
    b = jnp.where(small, 0.5 - angle**2 / 24.0, (1.0 - jnp.cos(safe_angle)) / safe_angle**2)

    K = skew_symmetric(log_r)
    I = jnp.broadcast_to(jnp.eye(3, dtype=log_r.dtype), K.shape)

    return I + a[..., None] * K + b[..., None] * jnp.matmul(K, K)


def angle(R: Array) -> Array:
    """
    Rotation angle in [0, pi] of a rotation matrix.

    Uses atan2 of the skew and trace parts, which stays accurate for small
    angles where arccos of the trace loses half the significant digits.

    Args:
        R: (..., 3, 3) rotation matrix

    Returns:
        (...,) rotation angle
    """
    skew_part = _skew_part(R)
    sin_angle = 0.5 * safe_norm(skew_part)
    cos_angle = 0.5 * (jnp.trace(R, axis1=-2, axis2=-1) - 1.0)
    return jnp.arctan2(sin_angle, cos_angle)


def log(R: Array) -> Array:
    """
    SO(3) logarithm map: rotation matrix to rotation vector.

    Inverse of exp() for angles in [0, pi). Near pi the axis is recovered
    from the symmetric part (R + I) / 2, whose sign is ambiguous: exp(log(R))
    still reproduces R, but log(exp(w)) may return -w for |w| close to pi.
    This is the known precision boundary of the standard encoding.

    Args:
        R: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 3) array of rotation vectors
    """
    skew_part = _skew_part(R)
    theta = angle(R)[..., None]
    sin_angle = jnp.sin(theta)

    small = theta < _SMALL_ANGLE
    near_pi = (theta > 0.5 * jnp.pi) & (sin_angle < 1e-6)

    # General case: axis * angle = skew / (2 sin(angle)) * angle
    safe_sin = jnp.where(small | near_pi, 1.0, sin_angle)
    w_general = skew_part * (theta / (2.0 * safe_sin))

    # Small angle: skew / 2 ~ angle * axis
    w_small = 0.5 * skew_part

    # Near pi: column of (R + I) / 2 with the largest diagonal entry
    B = 0.5 * (R + jnp.eye(3, dtype=R.dtype))
    diag_vals = jnp.diagonal(B, axis1=-2, axis2=-1)
    max_idx = jnp.argmax(diag_vals, axis=-1)
    axis_pi = jnp.take_along_axis(B, max_idx[..., None, None], axis=-1)[..., 0]
    axis_pi = axis_pi / jnp.linalg.norm(axis_pi, axis=-1, keepdims=True)
    w_pi = theta * axis_pi

    return jnp.where(small, w_small, jnp.where(near_pi, w_pi, w_general))


def _skew_part(R: Array) -> Array:
    return jnp.stack([
        R[..., 2, 1] - R[..., 1, 2],
        R[..., 0, 2] - R[..., 2, 0],
        R[..., 1, 0] - R[..., 0, 1]
    ], axis=-1)


def from_rpy(rpy: Array) -> Array:
    """Rotation matrix from URDF roll-pitch-yaw angles, R = Rz(yaw) Ry(pitch) Rx(roll)."""
    roll, pitch, yaw = rpy[..., 0], rpy[..., 1], rpy[..., 2]
    e_x = jnp.array([1.0, 0.0, 0.0], dtype=rpy.dtype)
    e_y = jnp.array([0.0, 1.0, 0.0], dtype=rpy.dtype)
    e_z = jnp.array([0.0, 0.0, 1.0], dtype=rpy.dtype)

    R_x = exp(roll[..., None] * e_x)
    R_y = exp(pitch[..., None] * e_y)
    R_z = exp(yaw[..., None] * e_z)

    return R_z @ R_y @ R_x


def from_quaternion(quaternions: Array) -> Array:
    """
    Convert quaternions to rotation matrices.

    Args:
        quaternions: (..., 4) array of quaternions in (w, x, y, z) format

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    quaternions = quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)

    w, x, y, z = jnp.moveaxis(quaternions, -1, 0)

    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z

    return jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)


def to_quaternion(matrix: Array) -> Array:
    """
    Convert rotation matrices to unit quaternions (w, x, y, z) with w >= 0.

    Picks the numerically dominant of the four standard branches per batch
    element, so it is safe for every rotation including angle pi.

    Args:
        matrix: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of quaternions in (w, x, y, z) format
    """
    m00, m01, m02 = matrix[..., 0, 0], matrix[..., 0, 1], matrix[..., 0, 2]
    m10, m11, m12 = matrix[..., 1, 0], matrix[..., 1, 1], matrix[..., 1, 2]
    m20, m21, m22 = matrix[..., 2, 0], matrix[..., 2, 1], matrix[..., 2, 2]

    trace = m00 + m11 + m22
    eps = jnp.finfo(matrix.dtype).eps

    candidates = [
        (jnp.stack([trace + 1.0, m21 - m12, m02 - m20, m10 - m01], axis=-1), 1.0 + trace),
        (jnp.stack([m21 - m12, m00 - m11 - m22 + 1.0, m01 + m10, m02 + m20], axis=-1), 1.0 + m00 - m11 - m22),
        (jnp.stack([m02 - m20, m01 + m10, m11 - m00 - m22 + 1.0, m12 + m21], axis=-1), 1.0 + m11 - m00 - m22),
        (jnp.stack([m10 - m01, m02 + m20, m12 + m21, m22 - m00 - m11 + 1.0], axis=-1), 1.0 - m00 - m11 + m22),
    ]
    scaled = [0.5 * q / jnp.sqrt(jnp.maximum(s, eps))[..., None] for q, s in candidates]

    mask0 = trace > 0
    mask1 = (~mask0) & (m00 > m11) & (m00 > m22)
    mask2 = (~mask0) & (~mask1) & (m11 > m22)
    mask3 = (~mask0) & (~mask1) & (~mask2)

    quaternion = sum(
        jnp.where(mask[..., None], q, 0.0)
        for mask, q in zip((mask0, mask1, mask2, mask3), scaled)
    )

    quaternion = jnp.where(quaternion[..., 0:1] < 0, -quaternion, quaternion)
    return quaternion / jnp.linalg.norm(quaternion, axis=-1, keepdims=True)


def quaternion_log(matrix: Array) -> Array:
    """
    Quaternion logarithm of a rotation: axis * angle / 2.

    The quaternion is taken with a non-negative scalar part, so the result
    has norm at most pi / 2.

    Args:
        matrix: (..., 3, 3) rotation matrix

    Returns:
        (..., 3) half-angle rotation vector
    """
    q = to_quaternion(matrix)
    w, xyz = q[..., 0:1], q[..., 1:]
    n = safe_norm(xyz, keepdims=True)
    small = n < _SMALL_ANGLE
    safe_n = jnp.where(small, 1.0, n)
    # atan2(n, w) / n -> 1 / w as n -> 0
    scale = jnp.where(small, 1.0 / w, jnp.arctan2(n, w) / safe_n)
    return scale * xyz


def quaternion_exp(u: Array) -> Array:
    """
    Inverse of quaternion_log(): half-angle rotation vector to matrix.

    Args:
        u: (..., 3) half-angle rotation vector

    Returns:
        (..., 3, 3) rotation matrix
    """
    n = safe_norm(u, keepdims=True)
    small = n < _SMALL_ANGLE
    safe_n = jnp.where(small, 1.0, n)
    sinc = jnp.where(small, 1.0 - n**2 / 6.0, jnp.sin(safe_n) / safe_n)
    q = jnp.concatenate([jnp.cos(n), sinc * u], axis=-1)
    return from_quaternion(q)
