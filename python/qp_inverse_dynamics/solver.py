"""
solver.py — qpsolvers 래퍼

QP 내부 알고리즘은 블랙박스. available / found 두 가지만 본다.
sparse 백엔드(osqp 등)에는 scipy.sparse CSC 행렬을 넘긴다.
"""

import numpy as np
import qpsolvers
import scipy.sparse as sp
from qpsolvers import Problem, solve_problem

from .config import QP_SOLVER, QP_SOLVER_OPTIONS


class QPSolveResult:
    """solve() 결과: found, 전체 변수 공간의 해 x, 상태 문자열."""

    def __init__(self, found: bool, x=None, status: str = ""):
        self.found = found
        self.x = x
        self.status = status

    def __repr__(self):
        return f"QPSolveResult(found={self.found}, status={self.status!r})"


class QPSolver:
    def __init__(self, solver: str = QP_SOLVER, **options):
        self.solver = solver
        self.options = dict(QP_SOLVER_OPTIONS) if solver == QP_SOLVER else {}
        self.options.update(options)

    @property
    def available(self) -> bool:
        return self.solver in qpsolvers.available_solvers

    def _prepare(self, problem: Problem) -> Problem:
        if self.solver not in qpsolvers.sparse_solvers or self.solver in qpsolvers.dense_solvers:
            return problem

        def csc(M):
            return None if M is None else sp.csc_matrix(M)

        return Problem(csc(problem.P), problem.q, csc(problem.G), problem.h,
                       csc(problem.A), problem.b, problem.lb, problem.ub)

    def solve(self, program) -> QPSolveResult:
        """program(QuadraticProgram)을 풀어 전체 해 벡터를 반환."""
        if not self.available:
            return QPSolveResult(False, status=f"solver '{self.solver}' not available")

        problem = self._prepare(program.to_problem())
        try:
            solution = solve_problem(problem, solver=self.solver, **self.options)
        except Exception as e:
            return QPSolveResult(False, status=f"{type(e).__name__}: {e}")

        x = solution.x
        if not solution.found or x is None or not np.all(np.isfinite(x)):
            return QPSolveResult(False, status="solution not found")
        return QPSolveResult(True, np.asarray(x, dtype=float), status="solved")
