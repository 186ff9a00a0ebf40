"""QP 역동역학 WBC 설정"""

# ============================================
# 물리
# ============================================
GRAVITY: float = 9.81

# ============================================
# 접촉 (friction cone 근사)
# ============================================
DEFAULT_MU: float = 1.0
DEFAULT_NUM_BASIS_PER_POINT: int = 4
BASIS_FORCE_MAX: float = 1000.0   # basis 계수 상한 (로봇 상태와 무관한 상수)

# ============================================
# QP 가중치 (기본값)
# ============================================
W_COM: float = 1.0
W_BODY: float = 1.0
W_VD: float = 1e-3
W_BASIS_REG: float = 1e-6

# ============================================
# QP Solver
# ============================================
QP_SOLVER: str = "osqp"
QP_SOLVER_OPTIONS: dict = {
    "eps_abs": 1e-9,
    "eps_rel": 1e-9,
    "max_iter": 200000,
    "verbose": False,
}

# ============================================
# 검증 / 디버그
# ============================================
EPSILON: float = 1e-6              # 등식/부등식 제약 검사 허용 오차
MOMENTUM_TOLERANCE: float = 1e-5   # 운동량 변화율 vs 외력 렌치 허용 오차 (상대)
DEBUG_CHECKS: bool = False
VERBOSE: bool = True

# ============================================
# 데모 (play_standing.py)
# ============================================
DT: float = 0.002
SIM_TIME: float = 10.0

COM_KP: float = 100.0
COM_KD: float = 20.0
TORSO_KP_ORI: float = 200.0
TORSO_KD_ORI: float = 28.0
POSTURE_KP: float = 50.0
POSTURE_KD: float = 14.0

W_TORSO: float = 1.0
W_POSTURE: float = 1e-2

# 발바닥 4점 접촉은 발 각속도가 0이 아니면 등식이 근사적으로만 만족된다
DEMO_QP_SOLVER_OPTIONS: dict = {
    "eps_abs": 1e-5,
    "eps_rel": 1e-5,
    "max_iter": 4000,
}
