"""Model architectures, training and the retraining job log."""
from .architectures import TASKS, TaskSpec, TireConvNet, build_model, get_task
from .retrain_manager import RetrainingJob, RetrainingJobLog

__all__ = [
    "TASKS",
    "TaskSpec",
    "TireConvNet",
    "build_model",
    "get_task",
    "RetrainingJob",
    "RetrainingJobLog",
]
