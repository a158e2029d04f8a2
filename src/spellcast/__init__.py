"""spellcast - Streaming hand-gesture and spell-sequence recognition."""

__version__ = "0.1.0"

from spellcast.config import EngineConfig, MotionThresholds
from spellcast.pose import Handedness, HandPoseSample, PoseBuffer
from spellcast.gestures import GestureDefinition, GestureRegistry, RegistrationError, finger_extensions
from spellcast.patterns import MotionPattern, classify_trajectory
from spellcast.trajectory import ActivityState, TrajectoryTracker
from spellcast.emitter import DetectionEvent, GestureEmitter
from spellcast.sequences import GestureSequence, SequenceMatcher, SequenceMatchResult, load_sequences
from spellcast.pipeline import GesturePipeline, PipelineStats, TickResult
from spellcast.recorder import SampleRecorder, SamplePlayer
from spellcast.profiler import PipelineProfiler
from spellcast.metrics import MetricsCollector
