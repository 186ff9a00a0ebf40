"""
contact.py — 접촉 body 정보 + friction cone basis

각 접촉점의 힘을 basis 방향들의 비음수 결합으로 표현한다:

  f_point = Σ_k  β_k * normalize(n + μ (cos θ_k t1 + sin θ_k t2)),   θ_k = 2πk / n_basis

접촉점 위치와 법선은 body frame 기준.
"""

from typing import Optional, Tuple

import numpy as np

from .config import DEFAULT_MU, DEFAULT_NUM_BASIS_PER_POINT
from .dynamics import skew


def _tangents(normal: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """법선에 수직인 정규직교 접선 쌍."""
    ref = np.array([1.0, 0.0, 0.0]) if abs(normal[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    t1 = np.cross(normal, ref)
    t1 /= np.linalg.norm(t1)
    t2 = np.cross(normal, t1)
    return t1, t2


class ContactInformation:
    """접촉 body 하나의 접촉점 집합과 friction cone 근사."""

    def __init__(
        self,
        body,
        contact_points,
        normal=(0.0, 0.0, 1.0),
        mu: float = DEFAULT_MU,
        num_basis_per_contact_point: int = DEFAULT_NUM_BASIS_PER_POINT,
        name: Optional[str] = None,
    ):
        points = np.array(contact_points, dtype=float).reshape(-1, 3)
        normal = np.array(normal, dtype=float).reshape(3)
        if points.shape[0] == 0:
            raise ValueError("contact needs at least one contact point")
        if not (np.all(np.isfinite(points)) and np.all(np.isfinite(normal))):
            raise ValueError("contact geometry must be finite")
        if np.linalg.norm(normal) < 1e-12:
            raise ValueError("contact normal must be non-zero")
        if mu < 0.0:
            raise ValueError(f"friction coefficient must be >= 0, got {mu}")
        if int(num_basis_per_contact_point) < 1:
            raise ValueError("num_basis_per_contact_point must be >= 1")

        self.body = body
        self.contact_points = points
        self.normal = normal / np.linalg.norm(normal)
        self.mu = float(mu)
        self.num_basis_per_contact_point = int(num_basis_per_contact_point)
        self.name = name if name is not None else str(body)

    @property
    def num_contact_points(self) -> int:
        return self.contact_points.shape[0]

    @property
    def num_basis(self) -> int:
        return self.num_contact_points * self.num_basis_per_contact_point

    def _contact_points_in_world(self, dyn) -> np.ndarray:
        R, p = dyn.body_pose(self.body)
        return self.contact_points @ R.T + p

    # ================================================================== #
    # 매 tick 계산
    # ================================================================== #
    def compute_basis_matrix(self, dyn) -> np.ndarray:
        """basis 계수 → world frame 점 힘 (3N x num_basis, 점별 block diagonal)."""
        R, _ = dyn.body_pose(self.body)
        n_b = self.num_basis_per_contact_point
        t1, t2 = _tangents(self.normal)

        cone = np.zeros((3, n_b))
        for k in range(n_b):
            theta = 2.0 * np.pi * k / n_b
            d = self.normal + self.mu * (np.cos(theta) * t1 + np.sin(theta) * t2)
            cone[:, k] = R @ (d / np.linalg.norm(d))

        basis = np.zeros((3 * self.num_contact_points, self.num_basis))
        for i in range(self.num_contact_points):
            basis[3*i:3*i+3, n_b*i:n_b*(i+1)] = cone
        return basis

    def compute_jacobian_at_contact_points(self, dyn) -> np.ndarray:
        """접촉점 Jacobian 스택 (3N x nv)."""
        points = self._contact_points_in_world(dyn)
        return np.vstack([dyn.point_jacobian(self.body, p) for p in points])

    def compute_jacobian_dot_times_v_at_contact_points(self, dyn) -> np.ndarray:
        points = self._contact_points_in_world(dyn)
        return np.concatenate([dyn.point_jacobian_dot_times_v(self.body, p) for p in points])

    def compute_contact_points_and_reference_point(self, dyn, offset=None):
        """world frame 접촉점 (N x 3) 과 렌치 기준점 (접촉점 중심 + offset)."""
        points = self._contact_points_in_world(dyn)
        reference_point = points.mean(axis=0)
        if offset is not None:
            reference_point = reference_point + np.asarray(offset, dtype=float)
        return points, reference_point

    def compute_wrench_matrix(self, points: np.ndarray, reference_point: np.ndarray) -> np.ndarray:
        """점 힘 스택 (3N,) → 기준점에 대한 등가 렌치 [f; τ] (6 x 3N)."""
        points = np.asarray(points, dtype=float).reshape(-1, 3)
        W = np.zeros((6, 3 * points.shape[0]))
        for i, p in enumerate(points):
            W[:3, 3*i:3*i+3] = np.eye(3)
            W[3:, 3*i:3*i+3] = skew(p - reference_point)
        return W

    def __repr__(self):
        return (f"ContactInformation({self.name!r}, points={self.num_contact_points}, "
                f"mu={self.mu}, basis/point={self.num_basis_per_contact_point})")
