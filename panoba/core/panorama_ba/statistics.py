"""
Statistics of one panoramic Bundle Adjustment run
"""

import logging
from collections import defaultdict
from enum import Enum
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)


class EParameter(Enum):
    POSE = "pose"
    INTRINSIC = "intrinsic"


class ParameterState(Enum):
    """Per-entity classification supplied by the optimization strategy"""

    REFINED = "refined"
    CONSTANT = "constant"
    IGNORED = "ignored"


EXPORT_HEADER = (
    "Time/BA(s);RefinedPose;ConstPose;IgnoredPose;"
    "RefinedK;ConstK;IgnoredK;"
    "ResidualBlocks;SuccessIteration;BadIteration;"
    "InitRMSE;FinalRMSE;"
    + "".join(f"d={d};" for d in range(-1, 10))
    + "d=10+;\n"
)


class Statistics:
    """
    Counters filled while building and solving the problem.

    A fresh instance is created for every run.
    """

    def __init__(self):
        self.parameters_states: Dict[EParameter, Dict[ParameterState, int]] = {
            parameter: {state: 0 for state in ParameterState} for parameter in EParameter
        }
        self.time = 0.0
        self.nb_successful_iterations = 0
        self.nb_unsuccessful_iterations = 0
        self.nb_residual_blocks = 0
        self.rmse_initial = 0.0
        self.rmse_final = 0.0
        self.nb_cameras_per_distance: Dict[int, int] = defaultdict(int)

    def add_state(self, parameter: EParameter, state: ParameterState):
        self.parameters_states[parameter][state] += 1

    def get_state_count(self, parameter: EParameter, state: ParameterState) -> int:
        return self.parameters_states[parameter][state]

    def add_camera_distance(self, distance: int):
        """Count one camera at the given graph distance (-1: not connected)"""
        self.nb_cameras_per_distance[distance] += 1

    def show(self):
        """Log a human readable report"""
        pose = self.parameters_states[EParameter.POSE]
        intrinsic = self.parameters_states[EParameter.INTRINSIC]

        if self.nb_cameras_per_distance:
            not_connected = sum(n for d, n in self.nb_cameras_per_distance.items() if d < 0)
            upper_one = sum(n for d, n in self.nb_cameras_per_distance.items() if d > 1)
            local = (
                "\t- local strategy enabled: yes\n"
                "\t- graph-distances distribution:\n"
                f"\t    - not connected: {not_connected} cameras\n"
                f"\t    - D = 0: {self.nb_cameras_per_distance.get(0, 0)} cameras\n"
                f"\t    - D = 1: {self.nb_cameras_per_distance.get(1, 0)} cameras\n"
                f"\t    - D > 1: {upper_one} cameras\n"
            )
        else:
            local = "\t- local strategy enabled: no\n"

        logger.info(
            "Bundle Adjustment Statistics:\n"
            f"{local}"
            f"\t- adjustment duration: {self.time} s\n"
            "\t- poses:\n"
            f"\t    - # refined:  {pose[ParameterState.REFINED]}\n"
            f"\t    - # constant: {pose[ParameterState.CONSTANT]}\n"
            f"\t    - # ignored:  {pose[ParameterState.IGNORED]}\n"
            "\t- intrinsics:\n"
            f"\t    - # refined:  {intrinsic[ParameterState.REFINED]}\n"
            f"\t    - # constant: {intrinsic[ParameterState.CONSTANT]}\n"
            f"\t    - # ignored:  {intrinsic[ParameterState.IGNORED]}\n"
            f"\t- # residual blocks: {self.nb_residual_blocks}\n"
            f"\t- # successful iterations: {self.nb_successful_iterations}\n"
            f"\t- # unsuccessful iterations: {self.nb_unsuccessful_iterations}\n"
            f"\t- initial RMSE: {self.rmse_initial}\n"
            f"\t- final   RMSE: {self.rmse_final}"
        )

    def export_row(self) -> str:
        pose = self.parameters_states[EParameter.POSE]
        intrinsic = self.parameters_states[EParameter.INTRINSIC]
        values = [
            self.time,
            pose[ParameterState.REFINED],
            pose[ParameterState.CONSTANT],
            pose[ParameterState.IGNORED],
            intrinsic[ParameterState.REFINED],
            intrinsic[ParameterState.CONSTANT],
            intrinsic[ParameterState.IGNORED],
            self.nb_residual_blocks,
            self.nb_successful_iterations,
            self.nb_unsuccessful_iterations,
            self.rmse_initial,
            self.rmse_final,
        ]
        values.extend(self.nb_cameras_per_distance.get(d, 0) for d in range(-1, 10))
        values.append(sum(n for d, n in self.nb_cameras_per_distance.items() if d >= 10))
        return "".join(f"{value};" for value in values) + "\n"

    def export_to_file(self, folder, filename: str) -> bool:
        """
        Append one row to a semicolon separated file, writing the header
        first if the file is empty.

        Returns:
            False if the file cannot be opened
        """
        path = Path(folder) / filename
        try:
            with open(path, "a") as f:
                if f.tell() == 0:
                    f.write(EXPORT_HEADER)
                f.write(self.export_row())
        except OSError as e:
            logger.debug(f"Unable to open the Bundle adjustment statistics file '{path}': {e}")
            return False
        return True
