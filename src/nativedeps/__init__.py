"""Build orchestrator for pinned native dependencies."""

from .clean import WorkspaceCleaner
from .config import default_graph, load_config, parse_config
from .errors import (
    CompileError,
    ConfigError,
    ConfigureError,
    DownstreamBuildError,
    ErrorCode,
    ExtractionError,
    FetchError,
    NativeDepsError,
    PatchApplicationError,
    PolicyError,
    ValidationError,
)
from .executor import BuildGraphExecutor
from .graph import BuildGraph, Step
from .models import DownstreamBuild, PatchOperation, RunResult, StepRecord, Target, TargetState
from .policy import Policy, RetryPolicy
from .workspace import Workspace

__all__ = [
    "BuildGraph",
    "BuildGraphExecutor",
    "CompileError",
    "ConfigError",
    "ConfigureError",
    "DownstreamBuild",
    "DownstreamBuildError",
    "ErrorCode",
    "ExtractionError",
    "FetchError",
    "NativeDepsError",
    "PatchApplicationError",
    "PatchOperation",
    "Policy",
    "PolicyError",
    "RetryPolicy",
    "RunResult",
    "Step",
    "StepRecord",
    "Target",
    "TargetState",
    "ValidationError",
    "Workspace",
    "WorkspaceCleaner",
    "default_graph",
    "load_config",
    "parse_config",
]
