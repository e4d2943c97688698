"""SE(3) and se(3) Lie group operations in JAX.

Poses are (..., 4, 4) homogeneous matrices and tangent vectors are (..., 6)
arrays ordered [vx, vy, vz, wx, wy, wz]. Two tangent encodings are provided:

* ``LieAlgMode.STANDARD``: the true se(3) exponential, translation coupled to
  rotation through the left Jacobian V.
* ``LieAlgMode.PSEUDO``: translation uncoupled (t = v) and rotation through
  the unit quaternion logarithm (w is half the rotation vector). There is no
  V matrix to invert, at the cost of a mapping that is not the group
  exponential.

The two are not interchangeable: a tangent vector produced by one encoding's
``ln`` must only be fed to the same encoding's ``exp``.
"""

import enum

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


class LieAlgMode(enum.Enum):
    STANDARD = "standard"
    PSEUDO = "pseudo"


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=jnp.result_type(p, R))
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def identity(dtype=jnp.float64) -> Array:
    return jnp.eye(4, dtype=dtype)


def exp(twist: Array) -> Array:
    """
    SE(3) exponential map (standard encoding): twist to transformation.

    Uses Taylor expansions of the V matrix coefficients for small angles.

    Args:
        twist: (..., 6) array of twists [vx, vy, vz, wx, wy, wz].

    Returns:
        (..., 4, 4) array of transformation matrices.
    """
    v, w = twist[..., :3], twist[..., 3:]
    angle = so3.safe_norm(w, keepdims=True)
    angle_sq = angle * angle
    is_small_angle = angle < 1e-6
    safe_angle = jnp.where(is_small_angle, 1.0, angle)

    # A = (1 - cos(theta)) / theta^2, B = (theta - sin(theta)) / theta^3
    A = jnp.where(is_small_angle, 0.5 - angle_sq / 24.0,
                  (1.0 - jnp.cos(safe_angle)) / safe_angle**2)
    B = jnp.where(is_small_angle, 1.0 / 6.0 - angle_sq / 120.0,
                  (safe_angle - jnp.sin(safe_angle)) / safe_angle**3)

    K = so3.skew_symmetric(w)
    I = jnp.broadcast_to(jnp.eye(3, dtype=twist.dtype), K.shape)
    V = I + A[..., None] * K + B[..., None] * jnp.matmul(K, K)

    t = jnp.einsum("...ij,...j->...i", V, v)

    return from_position_and_rotation(t, so3.exp(w))


def log(T: Array) -> Array:
    """
    SE(3) logarithm map (standard encoding): transformation to twist.

    Ill-conditioned as the rotation angle approaches pi (see so3.log); the
    translational part inherits that boundary through V^-1.

    Args:
        T: (..., 4, 4) array of transformation matrices.

    Returns:
        (..., 6) array of twists [vx, vy, vz, wx, wy, wz].
    """
    R, t = T[..., :3, :3], T[..., :3, 3]

    w = so3.log(R)
    angle = so3.safe_norm(w, keepdims=True)
    is_small_angle = angle < 1e-6
    safe_angle = jnp.where(is_small_angle, 1.0, angle)
    half_angle = 0.5 * safe_angle

    # V^-1 = I - K/2 + C K^2 with C = (1 - (theta/2) cot(theta/2)) / theta^2 -> 1/12
    C = jnp.where(is_small_angle, 1.0 / 12.0,
                  (1.0 - half_angle * jnp.cos(half_angle) / jnp.sin(half_angle)) / safe_angle**2)

    K = so3.skew_symmetric(w)
    I = jnp.broadcast_to(jnp.eye(3, dtype=T.dtype), K.shape)
    V_inv = I - 0.5 * K + C[..., None] * jnp.matmul(K, K)

    v = jnp.einsum("...ij,...j->...i", V_inv, t)

    return jnp.concatenate([v, w], axis=-1)


def pseudo_exp(twist: Array) -> Array:
    """
    Pseudo-encoding exponential: (R, t) = (quaternion_exp(w), v).

    Args:
        twist: (..., 6) array [vx, vy, vz, wx, wy, wz] with w a half-angle
            rotation vector.

    Returns:
        (..., 4, 4) array of transformation matrices.
    """
    return from_position_and_rotation(twist[..., :3], so3.quaternion_exp(twist[..., 3:]))


def pseudo_log(T: Array) -> Array:
    """
    Pseudo-encoding logarithm: [t, quaternion_log(R)].

    Args:
        T: (..., 4, 4) array of transformation matrices.

    Returns:
        (..., 6) array of pseudo tangent vectors.
    """
    return jnp.concatenate([T[..., :3, 3], so3.quaternion_log(T[..., :3, :3])], axis=-1)


def lie_exp(twist: Array, mode: LieAlgMode = LieAlgMode.STANDARD) -> Array:
    """Exponential map in the given encoding."""
    if mode is LieAlgMode.PSEUDO:
        return pseudo_exp(twist)
    return exp(twist)


def lie_ln(T: Array, mode: LieAlgMode = LieAlgMode.STANDARD) -> Array:
    """Logarithm map in the given encoding."""
    if mode is LieAlgMode.PSEUDO:
        return pseudo_log(T)
    return log(T)


def hat(twist: Array) -> Array:
    """
    6-vector to its (..., 4, 4) se(3) matrix [[skew(w), v], [0, 0]].
    """
    K = so3.skew_symmetric(twist[..., 3:])
    out = jnp.zeros(twist.shape[:-1] + (4, 4), dtype=twist.dtype)
    out = out.at[..., :3, :3].set(K)
    return out.at[..., :3, 3].set(twist[..., :3])


def vee(matrix: Array) -> Array:
    """Inverse of hat()."""
    w = jnp.stack([matrix[..., 2, 1], matrix[..., 0, 2], matrix[..., 1, 0]], axis=-1)
    return jnp.concatenate([matrix[..., :3, 3], w], axis=-1)


def multiply(T1: Array, T2: Array) -> Array:
    """
    Group operator: T1 @ T2.

    Args:
        T1: (..., 4, 4) first transformation matrix
        T2: (..., 4, 4) second transformation matrix

    Returns:
        (..., 4, 4) composition
    """
    return jnp.matmul(T1, T2)


def inverse(T: Array) -> Array:
    """
    Compute inverse of SE(3) transformation matrix.

    T^-1 = [[R^T, -R^T @ t], [0, 1]]

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 4, 4) inverse transformation matrix
    """
    R_inv = jnp.swapaxes(T[..., :3, :3], -1, -2)
    t_inv = -jnp.einsum("...ij,...j->...i", R_inv, T[..., :3, 3])
    return from_position_and_rotation(t_inv, R_inv)


def displacement(T_a: Array, T_b: Array) -> Array:
    """Relative pose of b seen from a: inverse(a) @ b."""
    return jnp.matmul(inverse(T_a), T_b)


def displacement_based_distance(T_a: Array, T_b: Array,
                                mode: LieAlgMode = LieAlgMode.STANDARD) -> Array:
    """
    Norm of the tangent vector of displacement(a, b).

    Returns:
        (...,) distances
    """
    return so3.safe_norm(lie_ln(displacement(T_a, T_b), mode))


def interpolate(T_a: Array, T_b: Array, t, mode: LieAlgMode = LieAlgMode.STANDARD) -> Array:
    """
    Geodesic interpolation a @ exp(t * ln(displacement(a, b))).

    t = 0 gives a and t = 1 gives b (inside the injectivity radius).
    """
    delta = lie_ln(displacement(T_a, T_b), mode)
    return jnp.matmul(T_a, lie_exp(jnp.asarray(t)[..., None] * delta, mode))


def apply(T: Array, points: Array) -> Array:
    """
    Apply SE(3) transformation to points.

    Args:
        T: (..., 4, 4) transformation matrix
        points: (..., 3) points to transform

    Returns:
        (..., 3) transformed points
    """
    return jnp.einsum("...ij,...j->...i", T[..., :3, :3], points) + T[..., :3, 3]


def get_position(T: Array) -> Array:
    """(..., 3) translation of a (..., 4, 4) transform."""
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    """(..., 3, 3) rotation of a (..., 4, 4) transform."""
    return T[..., :3, :3]


def adjoint(T: Array) -> Array:
    """
    (..., 6, 6) adjoint of T, mapping [v, w] twists from T's frame to its parent.

    Ad(T) = [[R, [t]_x R], [0, R]]
    """
    R = T[..., :3, :3]
    t_skew = so3.skew_symmetric(T[..., :3, 3])
    top = jnp.concatenate([R, jnp.matmul(t_skew, R)], axis=-1)
    bottom = jnp.concatenate([jnp.zeros_like(R), R], axis=-1)
    return jnp.concatenate([top, bottom], axis=-2)
