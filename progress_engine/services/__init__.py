"""Service layer wiring the engine components"""
from progress_engine.services.progress_service import ProgressService, build_progress_service

__all__ = ["ProgressService", "build_progress_service"]
