"""Framework-free internal link candidate generation engine."""

from .config import EngineConfig, load_config
from .errors import (
    EngineError,
    ExternalServiceError,
    ImportNotReady,
    InvalidTransition,
    NotFound,
    PersistenceError,
    ProfileError,
    RunAlreadyActive,
    RunCanceled,
    ScenarioError,
)
from .pipeline import GenerationPipeline, GenerationResult
from .profile import SEOProfile, profile_from_dict
from .progress import RunControl

__all__ = [
    "EngineConfig",
    "EngineError",
    "ExternalServiceError",
    "GenerationPipeline",
    "GenerationResult",
    "ImportNotReady",
    "InvalidTransition",
    "NotFound",
    "PersistenceError",
    "ProfileError",
    "RunAlreadyActive",
    "RunCanceled",
    "RunControl",
    "SEOProfile",
    "ScenarioError",
    "load_config",
    "profile_from_dict",
]
