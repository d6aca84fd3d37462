from .dsl import job, sh, uses, checkout, on, matrix, pipeline, wf, JobBuilder, build
from .model import Job, Pipeline, Step, Trigger
from .codec import dump_pipeline, load_pipeline, load_workflow, parse_pipeline
from .runner import run_pipeline
from .validate import Issue, OrderRule, validate_pipeline

__all__ = [
    "job", "sh", "uses", "checkout", "on", "matrix", "pipeline", "wf", "JobBuilder", "build",
    "Job", "Pipeline", "Step", "Trigger",
    "dump_pipeline", "load_pipeline", "load_workflow", "parse_pipeline",
    "run_pipeline",
    "Issue", "OrderRule", "validate_pipeline",
]
