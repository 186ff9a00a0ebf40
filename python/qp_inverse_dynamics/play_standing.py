"""
play_standing.py — QP 역동역학 WBC 기반 양발 서기 시뮬레이션

CoM PD + torso 자세 PD + 관절 자세 PD → desired 가속도
QPController → 토크 → data.ctrl

tick 실패 시 이전 토크를 유지한다.

실행: python -m qp_inverse_dynamics.play_standing
"""

import numpy as np
import mujoco
import mujoco.viewer
from loop_rate_limiters import RateLimiter

from .config import (
    DT, SIM_TIME,
    COM_KP, COM_KD,
    TORSO_KP_ORI, TORSO_KD_ORI,
    POSTURE_KP, POSTURE_KD,
    W_COM, W_TORSO, W_POSTURE, W_BASIS_REG,
    QP_SOLVER, DEMO_QP_SOLVER_OPTIONS,
)
from .contact import ContactInformation
from .controller import ControlStatus, QPController
from .dynamics import MujocoDynamics
from .qp_io import DesiredBodyAcceleration, QPInput, format_output
from .robot_models import foot_contact_points, load_biped
from .solver import QPSolver


def _ori_error(R_ref, R_curr):
    """SO(3) 오차 → axis-angle 벡터 (world frame)."""
    R_err = R_ref @ R_curr.T
    angle = np.arccos(np.clip((np.trace(R_err) - 1) / 2, -1, 1))
    if abs(angle) < 1e-8:
        return np.zeros(3)
    axis = np.array([
        R_err[2, 1] - R_err[1, 2],
        R_err[0, 2] - R_err[2, 0],
        R_err[1, 0] - R_err[0, 1],
    ]) / (2 * np.sin(angle))
    return angle * axis


def main():
    # ── 모델 로드 ──
    model, data = load_biped("stand")
    model.opt.timestep = DT

    dyn = MujocoDynamics(model, data, forward=False)
    controller = QPController(solver=QPSolver(QP_SOLVER, **DEMO_QP_SOLVER_OPTIONS))

    feet = [
        ContactInformation("left_foot", foot_contact_points(), name="left_foot"),
        ContactInformation("right_foot", foot_contact_points(), name="right_foot"),
    ]

    # ── 목표 (초기 자세 유지) ──
    com_ref = dyn.com.copy()
    torso_R_ref = np.eye(3)
    q0 = data.qpos[7:].copy()

    rate = RateLimiter(frequency=1.0 / DT, warn=False)
    tau_cmd = np.zeros(model.nu)
    n_fail = 0

    print(f"[INFO] QP WBC 서기 시뮬레이션 시작 | nv={dyn.nv} nu={dyn.nu} mass={dyn.mass:.2f}")

    with mujoco.viewer.launch_passive(model, data) as viewer:
        viewer.opt.flags[mujoco.mjtVisFlag.mjVIS_COM] = True
        viewer.opt.flags[mujoco.mjtVisFlag.mjVIS_CONTACTFORCE] = True

        while viewer.is_running() and data.time < SIM_TIME:
            dyn.update(forward=True)

            # CoM
            com_vel = dyn.J_com @ data.qvel
            comdd_d = COM_KP * (com_ref - dyn.com) - COM_KD * com_vel

            # Torso 자세
            torso_R, _ = dyn.body_pose("torso")
            torso_w = dyn.task_space_jacobian("torso")[3:] @ data.qvel
            torso_acc_d = np.zeros(6)
            torso_acc_d[3:] = (TORSO_KP_ORI * _ori_error(torso_R_ref, torso_R)
                               - TORSO_KD_ORI * torso_w)

            # 관절 자세
            vd_d = np.zeros(dyn.nv)
            vd_d[6:] = POSTURE_KP * (q0 - data.qpos[7:]) - POSTURE_KD * data.qvel[6:]

            qp_input = QPInput(
                desired_vd=vd_d,
                desired_comdd=comdd_d,
                w_com=W_COM,
                desired_body_accelerations=[
                    DesiredBodyAcceleration("torso", torso_acc_d, W_TORSO, name="torso"),
                ],
                w_vd=W_POSTURE,
                w_basis_reg=W_BASIS_REG,
                contact_info=feet,
            )

            status, output = controller.tick(dyn, qp_input)
            if status == ControlStatus.OK:
                tau_cmd = output.joint_torque
            else:
                n_fail += 1

            data.ctrl[:] = np.clip(tau_cmd, model.actuator_ctrlrange[:, 0],
                                   model.actuator_ctrlrange[:, 1])
            mujoco.mj_step(model, data)
            viewer.sync()
            rate.sleep()

    print(f"\n[완료] t={data.time:.2f}s | tick 실패 {n_fail}회")
    if controller.output is not None:
        print(format_output(controller.output))


if __name__ == "__main__":
    main()
