"""
Runtime configuration for the matching service.

Values come from the environment (a local .env file is loaded first) and fall
back to the defaults in matching.logic.constants.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from matching.logic import constants
from matching.logic.contracts import TrainingConfig

load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    cache_ttl_seconds: float = constants.MODEL_CACHE_TTL_SECONDS
    probability_floor: float = constants.PROBABILITY_FLOOR
    probability_ceiling: float = constants.PROBABILITY_CEILING
    global_retrain_interval: int = constants.GLOBAL_RETRAIN_INTERVAL
    auto_training_workers: int = 2
    training: TrainingConfig = field(default_factory=TrainingConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        training = TrainingConfig(
            learning_rate=_float_env("TRAINING_LEARNING_RATE", constants.DEFAULT_LEARNING_RATE),
            l2=_float_env("TRAINING_L2", constants.DEFAULT_L2),
            max_iterations=_int_env("TRAINING_MAX_ITERATIONS", constants.DEFAULT_MAX_ITERATIONS),
            convergence_threshold=_float_env(
                "TRAINING_CONVERGENCE_THRESHOLD", constants.DEFAULT_CONVERGENCE_THRESHOLD
            ),
            min_samples=_int_env("MIN_TRAINING_SAMPLES", constants.MIN_TRAINING_SAMPLES),
        )
        settings = cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cache_ttl_seconds=_float_env("MODEL_CACHE_TTL_SECONDS", constants.MODEL_CACHE_TTL_SECONDS),
            probability_floor=_float_env("PROBABILITY_FLOOR", constants.PROBABILITY_FLOOR),
            probability_ceiling=_float_env("PROBABILITY_CEILING", constants.PROBABILITY_CEILING),
            global_retrain_interval=_int_env("GLOBAL_RETRAIN_INTERVAL", constants.GLOBAL_RETRAIN_INTERVAL),
            auto_training_workers=_int_env("AUTO_TRAINING_WORKERS", 2),
            training=training,
        )
        if not 0.0 < settings.probability_floor < settings.probability_ceiling < 1.0:
            raise RuntimeError(
                "PROBABILITY_FLOOR and PROBABILITY_CEILING must satisfy 0 < floor < ceiling < 1"
            )
        if settings.global_retrain_interval < 1:
            raise RuntimeError("GLOBAL_RETRAIN_INTERVAL must be at least 1")
        return settings
