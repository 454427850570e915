"""
Pipelines package for the n8n manager package.

This package provides the backup and restore operations built on top of
the API client, the n8n CLI runner and the reconciliation engine.
"""

from n8n_manager.pipelines.base import BasePipeline, PipelineResult
from n8n_manager.pipelines.backup import BackupPipeline
from n8n_manager.pipelines.restore import RestorePipeline

__all__ = [
    "BasePipeline",
    "PipelineResult",
    "BackupPipeline",
    "RestorePipeline",
]
