"""
Pipeline orchestration module

Graph validation, the per-job phase runner, the loader chain and the
Pipeline running all configured jobs.
"""
from batchflow.orchestration.graph import GraphValidator, ValidationResult, validate
from batchflow.orchestration.loader_chain import ChainResult, LoaderChain, LoaderEffect, ProgressReporter
from batchflow.orchestration.phases import (
    ExtractOrchestrator,
    LoadOrchestrator,
    PipelineState,
    TransformOrchestrator,
)
from batchflow.orchestration.job import PipelineJob
from batchflow.orchestration.pipeline import Pipeline

__all__ = [
    'GraphValidator',
    'ValidationResult',
    'validate',
    'ChainResult',
    'LoaderChain',
    'LoaderEffect',
    'ProgressReporter',
    'ExtractOrchestrator',
    'TransformOrchestrator',
    'LoadOrchestrator',
    'PipelineState',
    'PipelineJob',
    'Pipeline',
]
