"""
program.py — QP 구조 (변수, 등식/부등식 제약, 2차 비용)

토폴로지가 바뀔 때만 새로 만들고, 매 tick에는 update()로 계수만 덮어쓴다.

  min  Σ_k  ½ x_kᵀ Q_k x_k + b_kᵀ x_k + c_k
  s.t. A_i x_i = b_i            (LinearEqualityConstraint)
       l_j ≤ A_j x_j ≤ u_j      (LinearConstraint)

x_k 는 각 항이 묶인 변수 구간(VariableRange)들을 이어붙인 부분 벡터.
"""

from typing import Dict, List, Sequence, Tuple

import numpy as np
from qpsolvers import Problem

from .config import EPSILON


class VariableRange:
    """결정 변수 벡터 안의 연속 구간 [start, start + size)."""

    def __init__(self, name: str, start: int, size: int):
        self.name = name
        self.start = int(start)
        self.size = int(size)

    @property
    def stop(self) -> int:
        return self.start + self.size

    @property
    def slice(self) -> slice:
        return slice(self.start, self.stop)

    def value(self, x: np.ndarray) -> np.ndarray:
        return x[self.start:self.stop]

    def __repr__(self):
        return f"VariableRange({self.name!r}, start={self.start}, size={self.size})"


class _Binding:
    """변수 구간 목록에 묶인 제약/비용 항의 공통 부분."""

    def __init__(self, var_ranges: Sequence[VariableRange], description: str):
        self.var_ranges = list(var_ranges)
        self.description = description
        if self.var_ranges:
            self.index = np.concatenate(
                [np.arange(r.start, r.stop, dtype=int) for r in self.var_ranges])
        else:
            self.index = np.zeros(0, dtype=int)
        self.num_cols = self.index.size

    def variable_values(self, x: np.ndarray) -> np.ndarray:
        return np.asarray(x)[self.index]

    @staticmethod
    def _write(dst: np.ndarray, src, name: str):
        src = np.asarray(src, dtype=float)
        if src.shape != dst.shape:
            raise ValueError(f"{name}: shape {src.shape} != {dst.shape}")
        dst[...] = src


class LinearEqualityConstraint(_Binding):
    """A x = b"""

    def __init__(self, A, b, var_ranges, description=""):
        super().__init__(var_ranges, description)
        self.b = np.array(b, dtype=float).reshape(-1)
        self.A = np.array(A, dtype=float).reshape(self.b.size, self.num_cols)

    @property
    def num_rows(self) -> int:
        return self.A.shape[0]

    def update(self, A, b):
        self._write(self.A, A, f"{self.description} A")
        self._write(self.b, b, f"{self.description} b")

    def residual(self, x: np.ndarray) -> np.ndarray:
        return self.A @ self.variable_values(x) - self.b


class LinearConstraint(_Binding):
    """lb <= A x <= ub  (무한대 bound 허용)"""

    def __init__(self, A, lb, ub, var_ranges, description=""):
        super().__init__(var_ranges, description)
        self.lb = np.array(lb, dtype=float).reshape(-1)
        self.A = np.array(A, dtype=float).reshape(self.lb.size, self.num_cols)
        self.ub = np.array(ub, dtype=float).reshape(self.A.shape[0])

    @property
    def num_rows(self) -> int:
        return self.A.shape[0]

    def update(self, A, lb, ub):
        self._write(self.A, A, f"{self.description} A")
        self._write(self.lb, lb, f"{self.description} lb")
        self._write(self.ub, ub, f"{self.description} ub")


class QuadraticCost(_Binding):
    """½ xᵀ Q x + bᵀ x + c"""

    def __init__(self, Q, b, var_ranges, description="", c=0.0):
        super().__init__(var_ranges, description)
        n = self.num_cols
        self.Q = np.array(Q, dtype=float).reshape(n, n)
        self.b = np.array(b, dtype=float).reshape(n)
        self.c = float(c)

    def update(self, Q, b, c=0.0):
        self._write(self.Q, Q, f"{self.description} Q")
        self._write(self.b, b, f"{self.description} b")
        self.c = float(c)

    def evaluate(self, x: np.ndarray) -> float:
        xs = self.variable_values(x)
        return float(0.5 * xs @ self.Q @ xs + self.b @ xs + self.c)


class QuadraticProgram:
    """변수/제약/비용 테이블. 추가 순서가 곧 레이아웃."""

    def __init__(self):
        self.variables: Dict[str, VariableRange] = {}
        self.num_vars = 0
        self.linear_equality_constraints: List[LinearEqualityConstraint] = []
        self.linear_constraints: List[LinearConstraint] = []
        self.quadratic_costs: List[QuadraticCost] = []
        self._P = None  # to_problem 버퍼, 구조가 바뀌면 다시 할당

    # ================================================================== #
    # 구조 생성
    # ================================================================== #
    def add_variables(self, size: int, name: str) -> VariableRange:
        if name in self.variables:
            raise ValueError(f"variable '{name}' already exists")
        var = VariableRange(name, self.num_vars, size)
        self.variables[name] = var
        self.num_vars += var.size
        self._P = None
        return var

    def get_variable(self, name: str) -> VariableRange:
        return self.variables[name]

    def add_linear_equality_constraint(self, A, b, var_ranges, description=""):
        con = LinearEqualityConstraint(A, b, var_ranges, description)
        self.linear_equality_constraints.append(con)
        self._P = None
        return con

    def add_linear_constraint(self, A, lb, ub, var_ranges, description=""):
        con = LinearConstraint(A, lb, ub, var_ranges, description)
        self.linear_constraints.append(con)
        self._P = None
        return con

    def add_quadratic_cost(self, Q, b, var_ranges, description=""):
        cost = QuadraticCost(Q, b, var_ranges, description)
        self.quadratic_costs.append(cost)
        self._P = None
        return cost

    # ================================================================== #
    # qpsolvers Problem 조립
    # ================================================================== #
    def _allocate_problem_buffers(self):
        n = self.num_vars
        n_eq = sum(con.num_rows for con in self.linear_equality_constraints)
        m = sum(con.num_rows for con in self.linear_constraints)
        self._P_sum = np.zeros((n, n))
        self._P = np.zeros((n, n))
        self._q = np.zeros(n)
        self._A = np.zeros((n_eq, n))
        self._b = np.zeros(n_eq)
        # [상한 행 m개; 하한 행 m개], 계수 밖 열은 항상 0
        self._G = np.zeros((2 * m, n))
        self._h = np.zeros(2 * m)

    def to_problem(self) -> Problem:
        """전체 변수 공간의 dense QP로 조립.

        l <= A x <= u 는 유한한 쪽만 G x <= h 행으로 바꾼다.
        버퍼는 구조(변수/제약/비용 추가)가 바뀔 때만 새로 할당하고
        매 호출은 계수만 덮어쓴다. 반환 배열은 다음 호출 때 덮어써진다.
        """
        if self._P is None:
            self._allocate_problem_buffers()

        P, q = self._P, self._q
        self._P_sum.fill(0.0)
        q.fill(0.0)
        for cost in self.quadratic_costs:
            self._P_sum[np.ix_(cost.index, cost.index)] += cost.Q
            q[cost.index] += cost.b
        np.add(self._P_sum, self._P_sum.T, out=P)
        P *= 0.5

        A, b = self._A, self._b
        r = 0
        for con in self.linear_equality_constraints:
            A[r:r + con.num_rows, con.index] = con.A
            b[r:r + con.num_rows] = con.b
            r += con.num_rows

        G, h = self._G, self._h
        m = G.shape[0] // 2
        r = 0
        for con in self.linear_constraints:
            k = con.num_rows
            G[r:r + k, con.index] = con.A
            G[m + r:m + r + k, con.index] = -con.A
            h[r:r + k] = con.ub
            np.negative(con.lb, out=h[m + r:m + r + k])
            r += k

        finite = np.isfinite(h)
        if not finite.all():
            G, h = G[finite], h[finite]
        if h.size == 0:
            G = h = None
        if A.shape[0] == 0:
            A = b = None
        return Problem(P, q, G, h, A, b)

    # ================================================================== #
    # 해 검증 (테스트에서도 직접 호출)
    # ================================================================== #
    def check_equality_constraints(self, x: np.ndarray, tol: float = EPSILON) -> List[str]:
        """위반된 등식 제약의 description 목록 (빈 리스트면 통과)."""
        violated = []
        for con in self.linear_equality_constraints:
            err = np.abs(con.residual(x))
            if np.any(err > tol * (1.0 + np.abs(con.b))):
                violated.append(con.description)
        return violated

    def check_inequality_constraints(self, x: np.ndarray, tol: float = EPSILON) -> List[str]:
        """위반된 부등식 제약의 description 목록 (빈 리스트면 통과)."""
        violated = []
        for con in self.linear_constraints:
            Ax = con.A @ con.variable_values(x)
            lo_tol = tol * (1.0 + np.abs(np.nan_to_num(con.lb, posinf=0.0, neginf=0.0)))
            up_tol = tol * (1.0 + np.abs(np.nan_to_num(con.ub, posinf=0.0, neginf=0.0)))
            if np.any(Ax < con.lb - lo_tol) or np.any(Ax > con.ub + up_tol):
                violated.append(con.description)
        return violated

    def evaluate_costs(self, x: np.ndarray) -> List[Tuple[str, float]]:
        return [(cost.description, cost.evaluate(x)) for cost in self.quadratic_costs]
