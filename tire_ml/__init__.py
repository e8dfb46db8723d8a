"""
Tire ML Continuous-Learning Backend
===================================
Sample collection, model serving, retraining and drift monitoring for
tire tread-depth and condition analysis.

Components:
- Sample Store: file-per-sample training data
- Inference Service: model-server client with mock fallback
- Continuous Learning Coordinator: capture/feedback loop and retraining trigger
- Training Pipeline, Evaluation Service, Pipeline Orchestrator

Author: Tire ML Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Tire ML Team"
