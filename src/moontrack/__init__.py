from .calibration import Calibration, RawSample, SingularFitError, fit
from .config import AppConfig, CapturePolicy, load_config
from .convergence import SequenceAbortedError, wait_for_heading
from .errors import ConfigurationError, DeviceNotFoundError, MoontrackError, TransportFailureError
from .imu import WitMotionImu
from .rotor import GreenHeronRotor
from .sequencer import CalibrationSequencer, MotionStep
from .tracker import Tracker
from .wit_protocol import FrameAssembler, WitFrame, WitFrameType

__all__ = [
    "AppConfig",
    "Calibration",
    "CalibrationSequencer",
    "CapturePolicy",
    "ConfigurationError",
    "DeviceNotFoundError",
    "FrameAssembler",
    "GreenHeronRotor",
    "MoontrackError",
    "MotionStep",
    "RawSample",
    "SequenceAbortedError",
    "SingularFitError",
    "Tracker",
    "TransportFailureError",
    "WitFrame",
    "WitFrameType",
    "WitMotionImu",
    "fit",
    "load_config",
    "wait_for_heading",
]
