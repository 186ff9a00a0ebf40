"""
qp_io.py — 컨트롤러 입력 (desired motion) / 출력 타입

공간 가속도, 렌치 모두 [linear; angular] 순서.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import W_BASIS_REG, W_BODY, W_COM, W_VD


def _finite_nonneg(w) -> bool:
    return bool(np.isfinite(w) and w >= 0.0)


class DesiredBodyAcceleration:
    """추종할 body의 목표 6-DoF 가속도 + 가중치."""

    def __init__(self, body, acceleration=None, weight: float = W_BODY, name: Optional[str] = None):
        self.body = body
        self.acceleration = np.zeros(6) if acceleration is None else np.asarray(acceleration, dtype=float)
        self.weight = float(weight)
        self.name = name if name is not None else str(body)

    def is_valid(self) -> bool:
        return self.acceleration.shape == (6,) and _finite_nonneg(self.weight)


class QPInput:
    """매 tick의 desired motion."""

    def __init__(
        self,
        desired_vd,
        desired_comdd=None,
        w_com: float = W_COM,
        desired_body_accelerations: Sequence[DesiredBodyAcceleration] = (),
        w_vd: float = W_VD,
        w_basis_reg: float = W_BASIS_REG,
        contact_info: Sequence = (),
    ):
        self.desired_vd = np.asarray(desired_vd, dtype=float)
        self.desired_comdd = np.zeros(3) if desired_comdd is None else np.asarray(desired_comdd, dtype=float)
        self.w_com = float(w_com)
        self.desired_body_accelerations = list(desired_body_accelerations)
        self.w_vd = float(w_vd)
        self.w_basis_reg = float(w_basis_reg)
        self.contact_info = list(contact_info)

    def is_valid(self, nv: int) -> bool:
        if self.desired_vd.shape != (nv,):
            return False
        if self.desired_comdd.shape != (3,):
            return False
        if not all(_finite_nonneg(w) for w in (self.w_com, self.w_vd, self.w_basis_reg)):
            return False
        return all(d.is_valid() for d in self.desired_body_accelerations)


class BodyAcceleration:
    def __init__(self, body, name: str, acceleration: np.ndarray):
        self.body = body
        self.name = name
        self.acceleration = acceleration


class ResolvedContact:
    """풀린 접촉 결과: basis 계수, 점 힘, 기준점에 대한 등가 렌치."""

    def __init__(self, body, name, basis, point_forces, equivalent_wrench, contact_points, reference_point):
        self.body = body
        self.name = name
        self.basis = basis                          # (num_basis,)
        self.point_forces = point_forces            # (N, 3)
        self.equivalent_wrench = equivalent_wrench  # (6,)
        self.contact_points = contact_points        # (N, 3) world
        self.reference_point = reference_point      # (3,) world


class QPOutput:
    def __init__(
        self,
        vd: np.ndarray,
        comdd: np.ndarray,
        body_accelerations: List[BodyAcceleration],
        resolved_contacts: List[ResolvedContact],
        joint_torque: np.ndarray,
        costs: List[Tuple[str, float]],
        coord_names: Optional[List[str]] = None,
    ):
        self.vd = vd
        self.comdd = comdd
        self.body_accelerations = body_accelerations
        self.resolved_contacts = resolved_contacts
        self.joint_torque = joint_torque
        self.costs = costs
        self.coord_names = coord_names

    def is_valid(self, nv: int, nu: int) -> bool:
        if self.vd.shape != (nv,) or self.joint_torque.shape != (nu,):
            return False
        if self.comdd.shape != (3,):
            return False
        return bool(np.all(np.isfinite(self.vd)) and np.all(np.isfinite(self.joint_torque)))

    def coord_name(self, i: int) -> str:
        if self.coord_names is not None and i < len(self.coord_names):
            return self.coord_names[i]
        return f"q{i}"


# ========================================================================= #
# 텍스트 출력 (디버깅용)
# ========================================================================= #
def _fmt(v) -> str:
    return np.array2string(np.asarray(v), precision=4, suppress_small=True)


def format_input(qp_input: QPInput) -> str:
    lines = ["=" * 47, "QPInput:"]
    lines.append(f"desired_comdd: {_fmt(qp_input.desired_comdd)}")
    for d in qp_input.desired_body_accelerations:
        lines.append(f"{d.name}_d: {_fmt(d.acceleration)}")
    lines.append(f"desired_vd: {_fmt(qp_input.desired_vd)}")
    lines.append(f"w_com: {qp_input.w_com}")
    for d in qp_input.desired_body_accelerations:
        lines.append(f"w_{d.name}: {d.weight}")
    lines.append(f"w_vd: {qp_input.w_vd}")
    lines.append(f"w_basis_reg: {qp_input.w_basis_reg}")
    return "\n".join(lines)


def format_output(output: QPOutput, num_torque_offset: int = 6) -> str:
    lines = ["=" * 47, "QPOutput:", "accelerations:"]
    for i, vd_i in enumerate(output.vd):
        lines.append(f"{output.coord_name(i)}: {vd_i:.6g}")
    lines.append(f"com acc: {_fmt(output.comdd)}")
    for acc in output.body_accelerations:
        lines.append(f"{acc.name} acc: {_fmt(acc.acceleration)}")

    lines.append("=" * 47)
    for contact in output.resolved_contacts:
        lines.append(f"{contact.name} wrench: {_fmt(contact.equivalent_wrench)}")
        lines.append("point forces:")
        lines.extend(_fmt(f) for f in contact.point_forces)

    lines += ["=" * 47, "torque:"]
    for i, tau_i in enumerate(output.joint_torque):
        lines.append(f"{output.coord_name(i + num_torque_offset)}: {tau_i:.6g}")
    lines += ["=" * 47, "costs:"]
    lines.extend(f"{name}: {value:.6g}" for name, value in output.costs)
    return "\n".join(lines)
