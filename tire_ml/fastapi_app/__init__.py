"""FastAPI applications: the model server and the learning API."""
from .main import create_app, run_app
from .learning import create_learning_app

__all__ = ["create_app", "run_app", "create_learning_app"]
