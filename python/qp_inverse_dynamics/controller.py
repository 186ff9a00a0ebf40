"""
controller.py — QP 역동역학 WBC (매 tick 단일 QP)

운동 방정식:
  M(q) vd + h(q, v) = S τ + Jᵀ λ

접촉 렌치 λ 대신 접촉점 힘을 friction cone basis 로 표현 (λ = Basis β, β ≥ 0):
  M vd + h = S τ + Jᵀ Basis β

floating base 이므로 S 의 위 6행은 0:
  τ = M_l vd + h_l - (Jᵀ Basis)_l β          (_l : 아래 nv-6 행)

QP 변수: x = [vd (nv), β (num_basis)]

등식 제약:
  M_u vd + h_u = (Jᵀ Basis)_u β               (운동 방정식 위 6행)
  J_c vd + Jdot_c v = 0                       (접촉점 가속도 = 0, 접촉 body별)

부등식 제약:
  0 ≤ β ≤ BASIS_FORCE_MAX
  τ_min ≤ τ(x) ≤ τ_max                        (액추에이터 공간)

비용:
  w_com  ‖J_com vd + Jdot_com v - comdd_d‖²
  Σ w_i  ‖J_i vd + Jdot_i v - xdd_i,d‖²
  w_vd   ‖vd - vd_d‖²
  w_β    ‖β‖²

QP 구조(변수/제약/비용)는 토폴로지(접촉 수, basis 수, DoF, ...)가 바뀔 때만
다시 만들고, 매 tick 에는 미리 할당된 버퍼에 계수만 채운다.
"""

import enum
from typing import List, Tuple

import numpy as np

from .config import BASIS_FORCE_MAX, DEBUG_CHECKS, EPSILON, MOMENTUM_TOLERANCE, VERBOSE
from .program import QuadraticProgram
from .qp_io import BodyAcceleration, QPInput, QPOutput, ResolvedContact
from .solver import QPSolver


class ControlStatus(enum.Enum):
    OK = 0
    INVALID_INPUT = 1
    SOLVER_UNAVAILABLE = 2
    NO_SOLUTION_FOUND = 3
    INVALID_OUTPUT = 4


def check_momentum_balance(dyn, output: QPOutput, tol: float = MOMENTUM_TOLERANCE):
    """순 외력 렌치 == centroidal momentum 변화율 검사.

    Σ_c [f_c ; τ_c + (p_ref,c - com) x f_c] + [m g ; 0]  ==  A_G vd + Adot_G v

    Returns:
        (ok, residual (6,))
    """
    Ld = dyn.centroidal_momentum_matrix @ output.vd + dyn.centroidal_momentum_matrix_dot_times_v

    net_wrench = np.zeros(6)
    net_wrench[:3] = dyn.mass * np.asarray(dyn.gravity)
    for contact in output.resolved_contacts:
        wrench = contact.equivalent_wrench
        net_wrench += wrench
        net_wrench[3:] += np.cross(contact.reference_point - dyn.com, wrench[:3])

    residual = net_wrench - Ld
    scale = max(1.0, np.linalg.norm(Ld), dyn.mass * np.linalg.norm(dyn.gravity))
    return bool(np.linalg.norm(residual) <= tol * scale), residual


class QPController:
    """QP 기반 역동역학 컨트롤러.

    tick() 한 번 = (dynamics 스냅샷, QPInput) → (status, QPOutput).
    같은 인스턴스에 대한 동시 호출은 지원하지 않는다.
    """

    def __init__(
        self,
        solver: QPSolver = None,
        basis_force_max: float = BASIS_FORCE_MAX,
        debug: bool = DEBUG_CHECKS,
        verbose: bool = VERBOSE,
        epsilon: float = EPSILON,
        momentum_tolerance: float = MOMENTUM_TOLERANCE,
    ):
        self.solver = solver if solver is not None else QPSolver()
        self.basis_force_max = float(basis_force_max)
        self.debug = debug
        self.verbose = verbose
        self.epsilon = epsilon
        self.momentum_tolerance = momentum_tolerance

        self.prog = None
        self.signature = None
        self._contact_layout = None

        # 마지막으로 성공한 tick 의 결과
        self.output = None
        self.solution = None

    def _log(self, msg: str):
        if self.verbose:
            print(msg)

    # ================================================================== #
    # 토폴로지
    # ================================================================== #
    @staticmethod
    def topology_signature(dyn, contacts, body_accelerations) -> Tuple[int, ...]:
        """(접촉 body 수, nv, basis 수, 접촉점 수, 액추에이터 수, body task 수)"""
        num_basis = sum(c.num_basis for c in contacts)
        num_point_force = sum(c.num_contact_points for c in contacts)
        return (len(contacts), int(dyn.nv), num_basis, num_point_force,
                int(dyn.nu), len(body_accelerations))

    def resize_qp(self, dyn, contacts, body_accelerations) -> bool:
        """토폴로지가 바뀌었으면 QP 구조를 새로 만든다. 다시 만들었으면 True."""
        signature = self.topology_signature(dyn, contacts, body_accelerations)
        # 접촉 body별 행 수가 달라지면 접촉 등식 제약의 크기도 달라진다
        layout = tuple((c.num_contact_points, c.num_basis) for c in contacts)
        if signature == self.signature and layout == self._contact_layout:
            return False

        num_contact_body, nv, num_basis, num_point_force, num_torque, num_body_acc = signature
        num_variable = nv + num_basis
        force_dim = 3 * num_point_force

        # 추가 순서가 곧 레이아웃
        prog = QuadraticProgram()
        vd = prog.add_variables(nv, "vd")
        basis = prog.add_variables(num_basis, "basis")

        # ── 계수 버퍼 ──
        self._stacked_contact_jacobians = np.zeros((force_dim, nv))
        self._basis_to_force_matrix = np.zeros((force_dim, num_basis))
        self._stacked_contact_jacobians_dot_times_v = np.zeros(force_dim)
        self._JB = np.zeros((nv, num_basis))
        self._torque_linear = np.zeros((nv - 6, num_variable))
        self._torque_constant = np.zeros(nv - 6)
        self._dynamics_linear = np.zeros((6, num_variable))
        self._dynamics_constant = np.zeros(6)
        self._inequality_linear = np.zeros((num_torque, num_variable))
        self._inequality_lower_bound = np.zeros(num_torque)
        self._inequality_upper_bound = np.zeros(num_torque)
        self._body_J = [np.zeros((6, nv)) for _ in range(num_body_acc)]
        self._body_Jdv = [np.zeros(6) for _ in range(num_body_acc)]
        self._eye_vd = np.eye(nv)
        self._eye_basis = np.eye(num_basis)

        # ── 등식 제약 ──
        self.eq_dynamics = prog.add_linear_equality_constraint(
            np.zeros((6, num_variable)), np.zeros(6), [vd, basis], "dynamics eq")
        self.eq_contacts = []
        for contact in contacts:
            rows = 3 * contact.num_contact_points
            self.eq_contacts.append(prog.add_linear_equality_constraint(
                np.zeros((rows, nv)), np.zeros(rows), [vd], f"{contact.name} contact eq"))

        # ── 부등식 제약 ──
        # basis 계수 bound 는 로봇 상태와 무관하므로 여기서 한 번만 채운다
        self.ineq_contact_wrench = prog.add_linear_constraint(
            np.eye(num_basis), np.zeros(num_basis), np.full(num_basis, self.basis_force_max),
            [basis], "contact force basis ineq")
        self.ineq_torque_limit = prog.add_linear_constraint(
            np.zeros((num_torque, num_variable)), np.zeros(num_torque), np.zeros(num_torque),
            [vd, basis], "torque limit ineq")

        # ── 비용 ──
        zero_Q, zero_b = np.zeros((nv, nv)), np.zeros(nv)
        self.cost_comdd = prog.add_quadratic_cost(zero_Q, zero_b, [vd], "com cost")
        self.cost_body_accelerations = [
            prog.add_quadratic_cost(zero_Q, zero_b, [vd], f"{d.name} cost")
            for d in body_accelerations
        ]
        self.cost_vd_reg = prog.add_quadratic_cost(zero_Q, zero_b, [vd], "vd reg cost")
        self.cost_basis_reg = prog.add_quadratic_cost(
            np.eye(num_basis), np.zeros(num_basis), [basis], "basis reg cost")

        self.prog = prog
        self.signature = signature
        self._contact_layout = layout
        return True

    # ================================================================== #
    # 매 tick 계수 채우기
    # ================================================================== #
    def assemble(self, dyn, qp_input: QPInput):
        """현재 스냅샷으로 모든 제약/비용 계수를 채운다.

        행/열 크기는 불변. 접촉/body 항의 이름은 현재 입력 기준으로 갱신한다.
        """
        contacts = qp_input.contact_info
        vd = self.prog.get_variable("vd").slice
        basis = self.prog.get_variable("basis").slice

        # ── 1. 접촉 Jacobian / basis 행렬 스택 ──
        self._basis_to_force_matrix[:] = 0.0
        row, col = 0, 0
        for contact in contacts:
            force_dim = 3 * contact.num_contact_points
            basis_dim = contact.num_basis
            self._basis_to_force_matrix[row:row + force_dim, col:col + basis_dim] = \
                contact.compute_basis_matrix(dyn)
            self._stacked_contact_jacobians[row:row + force_dim] = \
                contact.compute_jacobian_at_contact_points(dyn)
            self._stacked_contact_jacobians_dot_times_v[row:row + force_dim] = \
                contact.compute_jacobian_dot_times_v_at_contact_points(dyn)
            row += force_dim
            col += basis_dim
        np.matmul(self._stacked_contact_jacobians.T, self._basis_to_force_matrix, out=self._JB)

        # ── 2. τ = torque_linear @ x + torque_constant ──
        self._torque_linear[:, vd] = dyn.M[6:]
        self._torque_linear[:, basis] = -self._JB[6:]
        self._torque_constant[:] = dyn.bias[6:]

        # ── 3. 운동 방정식 (위 6행) ──
        self._dynamics_linear[:, vd] = dyn.M[:6]
        self._dynamics_linear[:, basis] = -self._JB[:6]
        self._dynamics_constant[:] = -dyn.bias[:6]
        self.eq_dynamics.update(self._dynamics_linear, self._dynamics_constant)

        # ── 4. 접촉 가속도 = 0 (접촉점당 3행) ──
        row = 0
        for contact, eq in zip(contacts, self.eq_contacts):
            eq.description = f"{contact.name} contact eq"
            force_dim = 3 * contact.num_contact_points
            eq.update(self._stacked_contact_jacobians[row:row + force_dim],
                      -self._stacked_contact_jacobians_dot_times_v[row:row + force_dim])
            row += force_dim

        # ── 5. 토크 한계 ──
        # u = B_lᵀ τ (B 는 orthonormal 가정), 제약은 액추에이터 인덱스 기준
        # min - B_lᵀ h_l <= B_lᵀ torque_linear x <= max - B_lᵀ h_l
        B_l = dyn.B[6:]
        np.matmul(B_l.T, self._torque_linear, out=self._inequality_linear)
        self._inequality_lower_bound[:] = -B_l.T @ self._torque_constant
        self._inequality_upper_bound[:] = self._inequality_lower_bound
        self._inequality_lower_bound += dyn.effort_limit_min
        self._inequality_upper_bound += dyn.effort_limit_max
        self.ineq_torque_limit.update(
            self._inequality_linear, self._inequality_lower_bound, self._inequality_upper_bound)

        # ── 6. 비용 ──
        # w ‖J vd + Jdv - a_d‖² / 2  →  Q = w JᵀJ,  b = w Jᵀ(Jdv - a_d)
        self._update_tracking_cost(self.cost_comdd, qp_input.w_com, dyn.J_com,
                                   dyn.Jdot_times_v_com, qp_input.desired_comdd)

        for i, body_motion_d in enumerate(qp_input.desired_body_accelerations):
            self.cost_body_accelerations[i].description = f"{body_motion_d.name} cost"
            self._body_J[i][:] = dyn.task_space_jacobian(body_motion_d.body)
            self._body_Jdv[i][:] = dyn.task_space_jacobian_dot_times_v(body_motion_d.body)
            self._update_tracking_cost(self.cost_body_accelerations[i], body_motion_d.weight,
                                       self._body_J[i], self._body_Jdv[i],
                                       body_motion_d.acceleration)

        w_vd = qp_input.w_vd
        vd_d = qp_input.desired_vd
        self.cost_vd_reg.update(w_vd * self._eye_vd, -w_vd * vd_d, 0.5 * w_vd * vd_d @ vd_d)
        self.cost_basis_reg.update(qp_input.w_basis_reg * self._eye_basis,
                                   np.zeros(self._eye_basis.shape[0]))

    @staticmethod
    def _update_tracking_cost(cost, weight, J, Jdv, desired):
        r = Jdv - desired
        cost.update(weight * J.T @ J, weight * J.T @ r, 0.5 * weight * r @ r)

    # ================================================================== #
    # 결과 해석
    # ================================================================== #
    def parse_result(self, dyn, qp_input: QPInput, x: np.ndarray) -> QPOutput:
        """해 벡터 → QPOutput (새 객체, 컨트롤러 상태는 건드리지 않음)."""
        vd = self.prog.get_variable("vd").value(x).copy()
        beta = self.prog.get_variable("basis").value(x).copy()

        # 접촉 렌치
        point_forces = self._basis_to_force_matrix @ beta
        resolved_contacts = []
        basis_index, force_index = 0, 0
        for contact in qp_input.contact_info:
            force_dim = 3 * contact.num_contact_points
            points, reference_point = contact.compute_contact_points_and_reference_point(dyn)
            forces = point_forces[force_index:force_index + force_dim]
            wrench = contact.compute_wrench_matrix(points, reference_point) @ forces
            resolved_contacts.append(ResolvedContact(
                contact.body, contact.name,
                beta[basis_index:basis_index + contact.num_basis],
                forces.reshape(-1, 3).copy(),
                wrench, points, reference_point,
            ))
            basis_index += contact.num_basis
            force_index += force_dim

        # 가속도
        comdd = dyn.J_com @ vd + dyn.Jdot_times_v_com
        body_accelerations = [
            BodyAcceleration(d.body, d.name, self._body_J[i] @ vd + self._body_Jdv[i])
            for i, d in enumerate(qp_input.desired_body_accelerations)
        ]

        # 토크 (관절 공간 → 액추에이터 공간)
        tau = self._torque_linear @ x + self._torque_constant
        joint_torque = dyn.B[6:].T @ tau

        return QPOutput(
            vd=vd,
            comdd=comdd,
            body_accelerations=body_accelerations,
            resolved_contacts=resolved_contacts,
            joint_torque=joint_torque,
            costs=self.prog.evaluate_costs(x),
            coord_names=getattr(dyn, "coord_names", None),
        )

    def validate_solution(self, dyn, x: np.ndarray, output: QPOutput) -> List[str]:
        """정식화 일관성 검사. 문제 목록 (빈 리스트면 통과)."""
        problems = [f"{d} violated" for d in self.prog.check_equality_constraints(x, self.epsilon)]
        problems += [f"{d} violated" for d in self.prog.check_inequality_constraints(x, self.epsilon)]
        ok, residual = check_momentum_balance(dyn, output, self.momentum_tolerance)
        if not ok:
            problems.append(f"momentum balance residual {np.linalg.norm(residual):.3e}")
        return problems

    # ================================================================== #
    # 메인: tick
    # ================================================================== #
    def tick(self, dyn, qp_input: QPInput):
        """(dynamics 스냅샷, QPInput) → (ControlStatus, QPOutput | None).

        OK 일 때만 self.output 을 갱신한다.
        """
        if dyn.nv < 6 or not qp_input.is_valid(dyn.nv):
            self._log("[QP] input is invalid")
            return ControlStatus.INVALID_INPUT, None

        self.resize_qp(dyn, qp_input.contact_info, qp_input.desired_body_accelerations)
        self.assemble(dyn, qp_input)

        if not self.solver.available:
            self._log(f"[QP] solver '{self.solver.solver}' not available")
            return ControlStatus.SOLVER_UNAVAILABLE, None

        result = self.solver.solve(self.prog)
        if not result.found:
            self._log(f"[QP ERROR] solution not found: {result.status}")
            return ControlStatus.NO_SOLUTION_FOUND, None

        output = self.parse_result(dyn, qp_input, result.x)

        if self.debug:
            problems = self.validate_solution(dyn, result.x, output)
            if problems:
                self._log(f"[QP ERROR] {'; '.join(problems)}")
                return ControlStatus.INVALID_OUTPUT, None

        if not output.is_valid(dyn.nv, dyn.nu):
            self._log("[QP] output is invalid")
            return ControlStatus.INVALID_OUTPUT, None

        self.solution = result.x
        self.output = output
        return ControlStatus.OK, output
