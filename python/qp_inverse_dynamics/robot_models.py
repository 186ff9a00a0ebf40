"""
robot_models.py — 테스트/데모용 MuJoCo 이족 모델

torso (free joint) + 다리 2개 (hip pitch/roll, knee, ankle pitch/roll)
nv = 16, nu = 10, 모든 관절에 gear 1 모터.
"""

import numpy as np
import mujoco

FOOT_HALF_LENGTH: float = 0.08
FOOT_HALF_WIDTH: float = 0.04
FOOT_SOLE_Z: float = -0.04      # foot body frame 기준 발바닥 높이

LEG_JOINTS = ["hip_pitch", "hip_roll", "knee", "ankle_pitch", "ankle_roll"]

_LEG_TEMPLATE = """
      <body name="{side}_thigh" pos="0 {y} -0.1">
        <joint name="{side}_hip_pitch" axis="0 1 0" range="-1.5 1.5"/>
        <joint name="{side}_hip_roll" axis="1 0 0" range="-0.5 0.5"/>
        <geom type="capsule" fromto="0 0 0 0 0 -0.35" size="0.04" mass="1.5"/>
        <body name="{side}_shin" pos="0 0 -0.35">
          <joint name="{side}_knee" axis="0 1 0" range="0 2.5"/>
          <geom type="capsule" fromto="0 0 0 0 0 -0.35" size="0.035" mass="1.0"/>
          <body name="{side}_foot" pos="0 0 -0.35">
            <joint name="{side}_ankle_pitch" axis="0 1 0" range="-1 1"/>
            <joint name="{side}_ankle_roll" axis="1 0 0" range="-0.5 0.5"/>
            <geom type="box" pos="0 0 -0.02" size="0.08 0.04 0.02" mass="0.3"/>
            <site name="{side}_foot" pos="0 0 -0.04" size="0.01"/>
          </body>
        </body>
      </body>"""

_ACTUATORS = "\n".join(
    f'    <motor name="{side}_{joint}" joint="{side}_{joint}"/>'
    for side in ("left", "right") for joint in LEG_JOINTS
)

BIPED_XML = f"""
<mujoco model="biped">
  <compiler angle="radian"/>
  <option timestep="0.002" gravity="0 0 -9.81"/>
  <default>
    <joint type="hinge" limited="true"/>
    <geom friction="1 0.005 0.0001" rgba="0.6 0.6 0.7 1"/>
    <motor ctrllimited="true" ctrlrange="-200 200" gear="1"/>
  </default>
  <worldbody>
    <light pos="0 0 3" dir="0 0 -1"/>
    <geom name="floor" type="plane" size="5 5 0.1" rgba="0.8 0.8 0.8 1"/>
    <body name="torso" pos="0 0 0.81">
      <freejoint name="root"/>
      <geom type="box" size="0.1 0.15 0.1" mass="10"/>
{_LEG_TEMPLATE.format(side="left", y=0.1)}
{_LEG_TEMPLATE.format(side="right", y=-0.1)}
    </body>
  </worldbody>
  <actuator>
{_ACTUATORS}
  </actuator>
  <keyframe>
    <key name="stand" qpos="0 0 0.8087 1 0 0 0  -0.3 0 0.6 -0.3 0  -0.3 0 0.6 -0.3 0"/>
  </keyframe>
</mujoco>
"""


def foot_contact_points() -> np.ndarray:
    """발바닥 네 모서리 (foot body frame, 4 x 3)."""
    lx, ly, z = FOOT_HALF_LENGTH, FOOT_HALF_WIDTH, FOOT_SOLE_Z
    return np.array([
        [lx, ly, z],
        [lx, -ly, z],
        [-lx, ly, z],
        [-lx, -ly, z],
    ])


def load_biped(keyframe: str = "stand"):
    """keyframe 자세로 초기화한 (model, data). mj_forward 까지 호출."""
    model = mujoco.MjModel.from_xml_string(BIPED_XML)
    data = mujoco.MjData(model)
    mujoco.mj_resetDataKeyframe(model, data, model.key(keyframe).id)
    mujoco.mj_forward(model, data)
    return model, data
