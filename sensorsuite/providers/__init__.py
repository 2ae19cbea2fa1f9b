"""
Sensor collaborators for the sampling scheduler.

Hardware adapters (``sounddevice_audio``, ``opencv_camera``) are imported on
demand so the synthetic providers work without audio or video libraries
installed on the host.
"""

from .base import (
    AudioClip,
    AudioInputProvider,
    AudioRingBuffer,
    AudioSegment,
    CameraProvider,
    CapturedImage,
    ConvergenceState,
    ExpressionProvider,
    EyeFrame,
    EyeTrackingProvider,
    GazeBehavior,
    GeometricSample,
    HeadPose,
    ImageFormat,
    LightProvider,
    MotionProvider,
    MotionReading,
    PoseProvider,
    PupilSample,
    Quaternion,
    RingBufferSegment,
    StaticEyeData,
    Vector3,
)
from .sensor_access import Capability, SensorAccess
from .synthetic import (
    SyntheticAudioInput,
    SyntheticCamera,
    SyntheticExpressionProvider,
    SyntheticEyeTracker,
    SyntheticLightProvider,
    SyntheticMotionProvider,
    SyntheticPoseProvider,
)

__all__ = [
    'AudioClip',
    'AudioInputProvider',
    'AudioRingBuffer',
    'AudioSegment',
    'CameraProvider',
    'Capability',
    'CapturedImage',
    'ConvergenceState',
    'ExpressionProvider',
    'EyeFrame',
    'EyeTrackingProvider',
    'GazeBehavior',
    'GeometricSample',
    'HeadPose',
    'ImageFormat',
    'LightProvider',
    'MotionProvider',
    'MotionReading',
    'PoseProvider',
    'PupilSample',
    'Quaternion',
    'RingBufferSegment',
    'SensorAccess',
    'StaticEyeData',
    'SyntheticAudioInput',
    'SyntheticCamera',
    'SyntheticExpressionProvider',
    'SyntheticEyeTracker',
    'SyntheticLightProvider',
    'SyntheticMotionProvider',
    'SyntheticPoseProvider',
    'Vector3',
]
