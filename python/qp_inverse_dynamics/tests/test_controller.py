"""QPController 단위 테스트

토폴로지 resize / 변수 레이아웃 / 계수 조립 / tick 상태 코드.
"""

import sys
import os
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from qp_inverse_dynamics.config import BASIS_FORCE_MAX, GRAVITY
from qp_inverse_dynamics.contact import ContactInformation
from qp_inverse_dynamics.controller import ControlStatus, QPController
from qp_inverse_dynamics.qp_io import DesiredBodyAcceleration, QPInput
from qp_inverse_dynamics.solver import QPSolver, QPSolveResult
from stub_dynamics import FloatingBody, StubDynamics


class FixedSolver:
    """항상 같은 해를 돌려주는 solver (검증 경로 테스트용)."""

    def __init__(self, x):
        self.solver = "fixed"
        self.x = np.asarray(x, dtype=float)

    @property
    def available(self):
        return True

    def solve(self, program):
        return QPSolveResult(True, self.x.copy(), status="solved")


@pytest.fixture
def controller():
    return QPController(verbose=False)


@pytest.fixture
def stub():
    return StubDynamics(nv=12, nu=6, seed=3)


def two_contacts(n_left=2, n_right=1, basis_left=4, basis_right=3):
    left = ContactInformation("left", np.zeros((n_left, 3)) + [0.1, 0.1, 0.0],
                              num_basis_per_contact_point=basis_left, name="left")
    right = ContactInformation("right", np.zeros((n_right, 3)) + [0.1, -0.1, 0.0],
                               num_basis_per_contact_point=basis_right, name="right")
    return [left, right]


def two_bodies():
    return [
        DesiredBodyAcceleration("pelvis", np.zeros(6), 1.0, name="pelvis"),
        DesiredBodyAcceleration("hand", np.zeros(6), 0.5, name="hand"),
    ]


def standing_point(mass=5.0, mu=0.0, normal=(0.0, 0.0, 1.0)):
    """CoM 위치의 접촉점 1개, basis 1개 (mu=0 이면 법선 방향 힘만)."""
    dyn = FloatingBody(mass=mass, com=(0.0, 0.0, 0.0))
    contact = ContactInformation(0, [[0.0, 0.0, 0.0]], normal=normal, mu=mu,
                                 num_basis_per_contact_point=1, name="point")
    return dyn, contact


# ========================================================================= #
# 토폴로지
# ========================================================================= #
class TestResize:
    def test_first_call_builds(self, controller, stub):
        assert controller.prog is None
        assert controller.resize_qp(stub, two_contacts(), two_bodies())
        assert controller.signature == (2, 12, 11, 3, 6, 2)

    def test_idempotent(self, controller, stub):
        contacts, bodies = two_contacts(), two_bodies()
        controller.resize_qp(stub, contacts, bodies)
        prog = controller.prog
        eq_dynamics = controller.eq_dynamics
        costs = list(prog.quadratic_costs)

        assert not controller.resize_qp(stub, contacts, bodies)
        assert controller.prog is prog
        assert controller.eq_dynamics is eq_dynamics
        assert all(a is b for a, b in zip(prog.quadratic_costs, costs))

    def test_variable_layout(self, controller, stub):
        controller.resize_qp(stub, two_contacts(), two_bodies())
        vd = controller.prog.get_variable("vd")
        basis = controller.prog.get_variable("basis")
        assert (vd.start, vd.size) == (0, 12)
        assert (basis.start, basis.size) == (12, 11)
        assert controller.prog.num_vars == 23

    def test_row_counts(self, controller, stub):
        controller.resize_qp(stub, two_contacts(), two_bodies())
        prog = controller.prog
        assert [c.num_rows for c in prog.linear_equality_constraints] == [6, 6, 3]
        assert [c.num_rows for c in prog.linear_constraints] == [11, 6]

    def test_creation_order(self, controller, stub):
        controller.resize_qp(stub, two_contacts(), two_bodies())
        prog = controller.prog
        assert [c.description for c in prog.linear_equality_constraints] == [
            "dynamics eq", "left contact eq", "right contact eq"]
        assert [c.description for c in prog.linear_constraints] == [
            "contact force basis ineq", "torque limit ineq"]
        assert [c.description for c in prog.quadratic_costs] == [
            "com cost", "pelvis cost", "hand cost", "vd reg cost", "basis reg cost"]

    def test_basis_bounds_fixed(self, controller, stub):
        controller.resize_qp(stub, two_contacts(), two_bodies())
        ineq = controller.ineq_contact_wrench
        np.testing.assert_array_equal(ineq.lb, np.zeros(11))
        np.testing.assert_array_equal(ineq.ub, np.full(11, BASIS_FORCE_MAX))

    def test_topology_change_rebuilds(self, controller, stub):
        controller.resize_qp(stub, two_contacts(), two_bodies())
        prog = controller.prog
        assert controller.resize_qp(stub, two_contacts()[:1], two_bodies())
        assert controller.prog is not prog
        assert len(controller.eq_contacts) == 1

        prog = controller.prog
        assert controller.resize_qp(stub, two_contacts()[:1], two_bodies()[:1])
        assert controller.prog is not prog

    def test_same_totals_redistributed_rebuilds(self, controller, stub):
        # 총 접촉점 / basis 수는 같고 body별 분배만 다름
        controller.resize_qp(stub, two_contacts(2, 1, 4, 4), [])
        signature = controller.signature
        assert controller.resize_qp(stub, two_contacts(1, 2, 4, 4), [])
        assert controller.signature == signature
        assert [c.num_rows for c in controller.eq_contacts] == [3, 6]


# ========================================================================= #
# 계수 조립
# ========================================================================= #
class TestAssemble:
    @pytest.fixture
    def assembled(self, controller, stub):
        contacts = two_contacts()
        bodies = two_bodies()
        qp_input = QPInput(
            desired_vd=np.arange(12.0),
            desired_comdd=np.array([0.1, 0.2, 0.3]),
            w_com=2.0,
            desired_body_accelerations=bodies,
            w_vd=0.1,
            w_basis_reg=1e-4,
            contact_info=contacts,
        )
        controller.resize_qp(stub, contacts, bodies)
        controller.assemble(stub, qp_input)
        basis = np.zeros((9, 11))
        basis[0:6, 0:8] = contacts[0].compute_basis_matrix(stub)
        basis[6:9, 8:11] = contacts[1].compute_basis_matrix(stub)
        J = np.vstack([contacts[0].compute_jacobian_at_contact_points(stub),
                       contacts[1].compute_jacobian_at_contact_points(stub)])
        return controller, stub, qp_input, J.T @ basis

    def test_dynamics_equality(self, assembled):
        controller, dyn, _, JB = assembled
        eq = controller.eq_dynamics
        np.testing.assert_allclose(eq.A[:, :12], dyn.M[:6])
        np.testing.assert_allclose(eq.A[:, 12:], -JB[:6])
        np.testing.assert_allclose(eq.b, -dyn.bias[:6])

    def test_contact_equality(self, assembled):
        controller, dyn, _, _ = assembled
        left, right = controller.eq_contacts
        np.testing.assert_allclose(left.A, np.vstack([dyn._Jp, dyn._Jp]))
        np.testing.assert_allclose(left.b, -np.concatenate([dyn._Jpdv, dyn._Jpdv]))
        np.testing.assert_allclose(right.A, dyn._Jp)

    def test_torque_limits(self, assembled):
        controller, dyn, _, JB = assembled
        ineq = controller.ineq_torque_limit
        np.testing.assert_allclose(ineq.A[:, :12], dyn.M[6:])
        np.testing.assert_allclose(ineq.A[:, 12:], -JB[6:])
        np.testing.assert_allclose(ineq.lb, dyn.effort_limit_min - dyn.bias[6:])
        np.testing.assert_allclose(ineq.ub, dyn.effort_limit_max - dyn.bias[6:])

    def test_com_cost(self, assembled):
        controller, dyn, qp_input, _ = assembled
        cost = controller.cost_comdd
        np.testing.assert_allclose(cost.Q, 2.0 * dyn.J_com.T @ dyn.J_com)
        np.testing.assert_allclose(
            cost.b, 2.0 * dyn.J_com.T @ (dyn.Jdot_times_v_com - qp_input.desired_comdd))

    def test_body_cost_weight(self, assembled):
        controller, dyn, _, _ = assembled
        hand = controller.cost_body_accelerations[1]
        np.testing.assert_allclose(hand.Q, 0.5 * dyn._Jt.T @ dyn._Jt)

    def test_cost_value_is_weighted_squared_residual(self, assembled):
        controller, dyn, qp_input, _ = assembled
        x = np.zeros(controller.prog.num_vars)
        x[:12] = np.linspace(-1.0, 1.0, 12)
        r = dyn.J_com @ x[:12] + dyn.Jdot_times_v_com - qp_input.desired_comdd
        assert np.isclose(controller.cost_comdd.evaluate(x), 0.5 * 2.0 * r @ r)

        x[:12] = qp_input.desired_vd
        assert np.isclose(controller.cost_vd_reg.evaluate(x), 0.0, atol=1e-9)

    def test_assemble_keeps_structure(self, assembled):
        controller, dyn, qp_input, _ = assembled
        prog = controller.prog
        A = controller.eq_dynamics.A
        controller.assemble(dyn, qp_input)
        assert controller.prog is prog
        assert controller.eq_dynamics.A is A


# ========================================================================= #
# tick 시나리오
# ========================================================================= #
class TestTick:
    def test_free_floating_no_contact(self, controller):
        """접촉 없음, bias 0, vd_d = 0 → vd = 0."""
        dyn = StubDynamics(nv=6, nu=0, seed=1)
        dyn.bias = np.zeros(6)
        qp_input = QPInput(desired_vd=np.zeros(6), w_com=0.0, w_vd=1.0, w_basis_reg=0.0)

        status, output = controller.tick(dyn, qp_input)
        assert status == ControlStatus.OK
        np.testing.assert_allclose(output.vd, np.zeros(6), atol=1e-6)
        assert output.joint_torque.shape == (0,)
        assert output.resolved_contacts == []
        assert controller.output is output

    def test_single_normal_contact_supports_weight(self, controller):
        """mu=0, basis 1개 → 법선 힘이 중력을 정확히 상쇄, vd = 0."""
        mass = 5.0
        dyn, contact = standing_point(mass)
        np.testing.assert_allclose(dyn.bias, [0, 0, mass * GRAVITY, 0, 0, 0])
        qp_input = QPInput(
            desired_vd=np.array([1.0, -2.0, 3.0, 0.5, 0.5, 0.5]),
            desired_comdd=np.array([1.0, 2.0, 3.0]),
            w_com=10.0,
            w_vd=1.0,
            contact_info=[contact],
        )

        status, output = controller.tick(dyn, qp_input)
        assert status == ControlStatus.OK
        np.testing.assert_allclose(output.vd, np.zeros(6), atol=1e-6)
        resolved = output.resolved_contacts[0]
        assert np.isclose(resolved.basis[0], mass * GRAVITY, rtol=1e-5)
        np.testing.assert_allclose(resolved.equivalent_wrench,
                                   [0, 0, mass * GRAVITY, 0, 0, 0], atol=1e-4)
        np.testing.assert_allclose(output.comdd, np.zeros(3), atol=1e-6)

    def test_costs_reported_in_creation_order(self, controller):
        dyn, contact = standing_point()
        qp_input = QPInput(
            desired_vd=np.zeros(6),
            desired_body_accelerations=[DesiredBodyAcceleration(0, np.zeros(6), name="body")],
            contact_info=[contact],
        )
        status, output = controller.tick(dyn, qp_input)
        assert status == ControlStatus.OK
        assert [name for name, _ in output.costs] == [
            "com cost", "body cost", "vd reg cost", "basis reg cost"]
        assert all(value >= -1e-9 for _, value in output.costs)
        assert len(output.body_accelerations) == 1
        assert output.body_accelerations[0].name == "body"

    def test_contact_switch_between_ticks(self, controller):
        dyn = FloatingBody(mass=4.0, com=(0.0, 0.0, 0.0))
        feet = [
            ContactInformation(0, [[0.0, 0.1, -0.5]], name="left"),
            ContactInformation(0, [[0.0, -0.1, -0.5]], name="right"),
        ]
        status, out_double = controller.tick(dyn, QPInput(np.zeros(6), contact_info=feet))
        assert status == ControlStatus.OK
        signature = controller.signature

        status, out_single = controller.tick(
            dyn, QPInput(np.zeros(6), contact_info=[ContactInformation(0, [[0.0, 0.0, -0.5]])]))
        assert status == ControlStatus.OK
        assert controller.signature != signature
        assert len(out_double.resolved_contacts) == 2
        assert len(out_single.resolved_contacts) == 1

    def test_renamed_terms_same_topology(self, controller):
        """토폴로지가 같아도 이름이 바뀌면 비용/제약 설명이 따라간다."""
        dyn = FloatingBody(mass=4.0, com=(0.0, 0.0, 0.0))

        def make_input(body_name, contact_name):
            return QPInput(
                np.zeros(6),
                desired_body_accelerations=[DesiredBodyAcceleration(0, np.zeros(6), name=body_name)],
                contact_info=[ContactInformation(0, [[0.0, 0.0, -0.5]], name=contact_name)],
            )

        status, first = controller.tick(dyn, make_input("pelvis", "left"))
        assert status == ControlStatus.OK
        prog = controller.prog
        assert first.costs[1][0] == "pelvis cost"

        status, second = controller.tick(dyn, make_input("hand", "right"))
        assert status == ControlStatus.OK
        assert controller.prog is prog
        assert second.costs[1][0] == "hand cost"
        assert second.body_accelerations[0].name == "hand"
        assert second.resolved_contacts[0].name == "right"
        assert [c.description for c in prog.linear_equality_constraints] == [
            "dynamics eq", "right contact eq"]


class TestFailure:
    def test_invalid_input_does_not_mutate(self, controller):
        dyn, contact = standing_point()
        status, output = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.OK
        prog, signature = controller.prog, controller.signature

        other = ContactInformation(0, [[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]])
        status, bad = controller.tick(dyn, QPInput(np.zeros(5), contact_info=[contact, other]))
        assert status == ControlStatus.INVALID_INPUT
        assert bad is None
        assert controller.output is output
        assert controller.prog is prog
        assert controller.signature == signature

    @pytest.mark.parametrize("kwargs", [
        dict(w_com=-1.0),
        dict(w_vd=np.nan),
        dict(desired_comdd=np.zeros(2)),
        dict(desired_body_accelerations=[DesiredBodyAcceleration(0, np.zeros(3))]),
    ])
    def test_invalid_weights_and_shapes(self, controller, kwargs):
        dyn, _ = standing_point()
        status, output = controller.tick(dyn, QPInput(np.zeros(6), **kwargs))
        assert status == ControlStatus.INVALID_INPUT
        assert output is None
        assert controller.output is None

    def test_too_few_dofs(self, controller):
        dyn = StubDynamics(nv=4, nu=0)
        status, _ = controller.tick(dyn, QPInput(np.zeros(4)))
        assert status == ControlStatus.INVALID_INPUT

    def test_solver_unavailable(self):
        controller = QPController(solver=QPSolver("not_a_solver"), verbose=False)
        dyn, contact = standing_point()
        status, output = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.SOLVER_UNAVAILABLE
        assert output is None
        assert controller.output is None

    def test_solver_unavailable_keeps_last_output(self, controller):
        dyn, contact = standing_point()
        qp_input = QPInput(np.zeros(6), contact_info=[contact])
        status, output = controller.tick(dyn, qp_input)
        assert status == ControlStatus.OK

        controller.solver = QPSolver("not_a_solver")
        status, _ = controller.tick(dyn, qp_input)
        assert status == ControlStatus.SOLVER_UNAVAILABLE
        assert controller.output is output

    def test_no_solution(self, controller):
        """법선이 아래를 향하면 중력을 버틸 수 없다."""
        dyn, contact = standing_point(normal=(0.0, 0.0, -1.0))
        status, output = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.NO_SOLUTION_FOUND
        assert output is None
        assert controller.output is None

    def test_logs_when_verbose(self, capsys):
        controller = QPController(verbose=True)
        dyn, _ = standing_point()
        controller.tick(dyn, QPInput(np.zeros(3)))
        assert "[QP] input is invalid" in capsys.readouterr().out

    def test_silent_when_not_verbose(self, controller, capsys):
        dyn, _ = standing_point()
        controller.tick(dyn, QPInput(np.zeros(3)))
        assert capsys.readouterr().out == ""


class TestDebugChecks:
    def test_debug_mode_accepts_valid_solution(self):
        controller = QPController(debug=True, verbose=False)
        dyn, contact = standing_point()
        status, _ = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.OK

    def test_debug_mode_rejects_inconsistent_solution(self):
        dyn, contact = standing_point()
        controller = QPController(solver=FixedSolver(np.zeros(7)), debug=True, verbose=False)
        status, output = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.INVALID_OUTPUT
        assert output is None
        assert controller.output is None

    def test_validate_solution_names_violations(self):
        dyn, contact = standing_point()
        controller = QPController(verbose=False)
        qp_input = QPInput(np.zeros(6), contact_info=[contact])
        status, output = controller.tick(dyn, qp_input)
        assert status == ControlStatus.OK
        assert controller.validate_solution(dyn, controller.solution, output) == []

        x_bad = controller.solution.copy()
        x_bad[-1] = -1.0
        bad_output = controller.parse_result(dyn, qp_input, x_bad)
        problems = controller.validate_solution(dyn, x_bad, bad_output)
        assert "dynamics eq violated" in problems
        assert "contact force basis ineq violated" in problems
        assert any(p.startswith("momentum balance") for p in problems)

    def test_non_debug_skips_checks(self):
        dyn, contact = standing_point()
        controller = QPController(solver=FixedSolver(np.zeros(7)), debug=False, verbose=False)
        status, output = controller.tick(dyn, QPInput(np.zeros(6), contact_info=[contact]))
        assert status == ControlStatus.OK
        np.testing.assert_allclose(output.vd, 0.0)
