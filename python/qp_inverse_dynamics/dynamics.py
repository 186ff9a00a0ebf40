"""
dynamics.py — Dynamics provider (현재 q, v에서의 동역학 스냅샷)

컨트롤러가 읽는 값:
  M (nv x nv), bias = C*v + g (nv,), B (nv x nu) 액추에이터 선택 행렬,
  effort limit (nu,), CoM / J_com / Jdot_com*v,
  centroidal momentum matrix A_G (6 x nv) / Adot_G*v (6,),
  body / point Jacobian 과 Jdot*v.

공간 벡터 순서는 [linear; angular].
"""

from typing import List, Tuple

import numpy as np
import mujoco


def skew(v: np.ndarray) -> np.ndarray:
    """[v]x : skew(a) @ b == cross(a, b)"""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])


class RobotDynamics:
    """Dynamics provider 인터페이스.

    구현체는 아래 속성을 현재 상태 기준으로 채우고 Jacobian 메서드를 제공한다.
    첫 6개 속도 성분은 floating base.
    """

    nv: int
    nu: int
    mass: float
    gravity: np.ndarray                 # (3,)
    M: np.ndarray                       # (nv, nv)
    bias: np.ndarray                    # (nv,)
    B: np.ndarray                       # (nv, nu)
    effort_limit_min: np.ndarray        # (nu,)
    effort_limit_max: np.ndarray        # (nu,)
    com: np.ndarray                     # (3,)
    J_com: np.ndarray                   # (3, nv)
    Jdot_times_v_com: np.ndarray        # (3,)
    centroidal_momentum_matrix: np.ndarray              # (6, nv)
    centroidal_momentum_matrix_dot_times_v: np.ndarray  # (6,)
    coord_names: List[str]

    def body_pose(self, body) -> Tuple[np.ndarray, np.ndarray]:
        """(R_wb (3x3), p_wb (3,))"""
        raise NotImplementedError

    def point_jacobian(self, body, point_w: np.ndarray) -> np.ndarray:
        """body에 고정된 world 좌표 point의 선속도 Jacobian (3 x nv)."""
        raise NotImplementedError

    def point_jacobian_dot_times_v(self, body, point_w: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def task_space_jacobian(self, body, offset=None) -> np.ndarray:
        """body 원점(+ body frame offset)의 spatial Jacobian (6 x nv)."""
        raise NotImplementedError

    def task_space_jacobian_dot_times_v(self, body, offset=None) -> np.ndarray:
        raise NotImplementedError


class MujocoDynamics(RobotDynamics):
    """MuJoCo 모델 기반 dynamics provider.

    floating base는 모델의 첫 번째 joint가 free joint라고 가정한다.
    update()를 매 tick 호출해서 스냅샷을 갱신한다.
    """

    def __init__(self, model: mujoco.MjModel, data: mujoco.MjData, forward: bool = True):
        if model.njnt == 0 or model.jnt_type[0] != mujoco.mjtJoint.mjJNT_FREE:
            raise ValueError("first joint must be a free joint (floating base)")

        self.model = model
        self.data = data
        self.nv = int(model.nv)
        self.nu = int(model.nu)
        self.mass = float(mujoco.mj_getTotalmass(model))
        self.gravity = model.opt.gravity.copy()
        self.coord_names = self._build_coord_names(model)

        # ── 액추에이터 선택 행렬 / effort limit (모델 상수) ──
        self.B = np.zeros((self.nv, self.nu))
        self.effort_limit_min = np.full(self.nu, -np.inf)
        self.effort_limit_max = np.full(self.nu, np.inf)
        for i in range(self.nu):
            if model.actuator_trntype[i] != mujoco.mjtTrn.mjTRN_JOINT:
                raise ValueError(f"actuator {i}: only joint transmission is supported")
            if (model.actuator_gaintype[i] != mujoco.mjtGain.mjGAIN_FIXED
                    or model.actuator_gainprm[i, 0] != 1.0
                    or model.actuator_biastype[i] != mujoco.mjtBias.mjBIAS_NONE):
                raise ValueError(f"actuator {i}: only motor actuators (ctrl == force) are supported")
            dof = model.jnt_dofadr[model.actuator_trnid[i, 0]]
            self.B[dof, i] = model.actuator_gear[i, 0]
            if model.actuator_forcelimited[i]:
                self.effort_limit_min[i], self.effort_limit_max[i] = model.actuator_forcerange[i]
            elif model.actuator_ctrllimited[i]:
                self.effort_limit_min[i], self.effort_limit_max[i] = model.actuator_ctrlrange[i]

        # 토크 매핑 u = B_lᵀ τ 는 B_l 의 열이 정규직교일 때만 성립 (gear ±1, 관절당 모터 1개)
        B_l = self.B[6:]
        if np.any(self.B[:6]) or not np.allclose(B_l.T @ B_l, np.eye(self.nu)):
            raise ValueError("actuators must drive distinct non-base joints with gear +-1")

        # ── 스냅샷 버퍼 ──
        nv = self.nv
        self.M = np.zeros((nv, nv))
        self.bias = np.zeros(nv)
        self.com = np.zeros(3)
        self.J_com = np.zeros((3, nv))
        self.Jdot_times_v_com = np.zeros(3)
        self.centroidal_momentum_matrix = np.zeros((6, nv))
        self.centroidal_momentum_matrix_dot_times_v = np.zeros(6)

        self._jacp = np.zeros((3, nv))
        self._jacr = np.zeros((3, nv))
        self._jacp_dot = np.zeros((3, nv))
        self._jacr_dot = np.zeros((3, nv))

        self.update(forward=forward)

    @staticmethod
    def _build_coord_names(model) -> List[str]:
        names = []
        for j in range(model.njnt):
            name = model.joint(j).name or f"joint{j}"
            jtype = model.jnt_type[j]
            if jtype == mujoco.mjtJoint.mjJNT_FREE:
                names += [f"{name}_{s}" for s in ("x", "y", "z", "wx", "wy", "wz")]
            elif jtype == mujoco.mjtJoint.mjJNT_BALL:
                names += [f"{name}_{s}" for s in ("wx", "wy", "wz")]
            else:
                names.append(name)
        return names

    # ================================================================== #
    # 스냅샷 갱신
    # ================================================================== #
    def update(self, forward: bool = True):
        model, data = self.model, self.data
        if forward:
            mujoco.mj_forward(model, data)

        mujoco.mj_fullM(model, data, self.M)
        self.bias[:] = data.qfrc_bias
        self._update_centroidal()

    def _update_centroidal(self):
        """A_G, Adot_G*v 를 body별 관성으로부터 직접 합산.

        h = Σ_i [ m_i v_i ;  I_i ω_i + m_i (c_i - c) x v_i ]
        hdot = A_G vd + Σ_i [ m_i Jpdot_i v ;
                              I_i Jrdot_i v + ω_i x I_i ω_i + m_i (c_i - c) x Jpdot_i v ]
        """
        model, data = self.model, self.data
        v = data.qvel
        A = self.centroidal_momentum_matrix
        Adv = self.centroidal_momentum_matrix_dot_times_v
        A[:] = 0.0
        Adv[:] = 0.0

        com = np.zeros(3)
        for i in range(1, model.nbody):
            com += model.body_mass[i] * data.xipos[i]
        self.com[:] = com / self.mass

        jacp, jacr = self._jacp, self._jacr
        jacp_dot, jacr_dot = self._jacp_dot, self._jacr_dot
        for i in range(1, model.nbody):
            m_i = model.body_mass[i]
            if m_i <= 0.0:
                continue
            c_i = data.xipos[i].copy()
            R_i = data.ximat[i].reshape(3, 3)
            I_i = R_i @ np.diag(model.body_inertia[i]) @ R_i.T
            r_i = c_i - self.com

            mujoco.mj_jac(model, data, jacp, jacr, c_i, i)
            mujoco.mj_jacDot(model, data, jacp_dot, jacr_dot, c_i, i)

            A[:3] += m_i * jacp
            A[3:] += I_i @ jacr + m_i * skew(r_i) @ jacp

            w_i = jacr @ v
            a_lin = jacp_dot @ v
            Adv[:3] += m_i * a_lin
            Adv[3:] += I_i @ (jacr_dot @ v) + np.cross(w_i, I_i @ w_i) + m_i * np.cross(r_i, a_lin)

        self.J_com[:] = A[:3] / self.mass
        self.Jdot_times_v_com[:] = Adv[:3] / self.mass

    # ================================================================== #
    # Jacobian
    # ================================================================== #
    def _body_id(self, body) -> int:
        if isinstance(body, str):
            return self.model.body(body).id
        return int(body)

    def body_pose(self, body):
        bid = self._body_id(body)
        return self.data.xmat[bid].reshape(3, 3).copy(), self.data.xpos[bid].copy()

    def _task_point(self, bid, offset):
        p = self.data.xpos[bid].copy()
        if offset is not None:
            p += self.data.xmat[bid].reshape(3, 3) @ np.asarray(offset, dtype=float)
        return p

    def point_jacobian(self, body, point_w):
        J = np.zeros((3, self.nv))
        point = np.asarray(point_w, dtype=float).copy()
        mujoco.mj_jac(self.model, self.data, J, None, point, self._body_id(body))
        return J

    def point_jacobian_dot_times_v(self, body, point_w):
        Jdot = np.zeros((3, self.nv))
        point = np.asarray(point_w, dtype=float).copy()
        mujoco.mj_jacDot(self.model, self.data, Jdot, None, point, self._body_id(body))
        return Jdot @ self.data.qvel

    def task_space_jacobian(self, body, offset=None):
        bid = self._body_id(body)
        J = np.zeros((6, self.nv))
        mujoco.mj_jac(self.model, self.data, J[:3], J[3:], self._task_point(bid, offset), bid)
        return J

    def task_space_jacobian_dot_times_v(self, body, offset=None):
        bid = self._body_id(body)
        Jdot = np.zeros((6, self.nv))
        mujoco.mj_jacDot(self.model, self.data, Jdot[:3], Jdot[3:], self._task_point(bid, offset), bid)
        return Jdot @ self.data.qvel
