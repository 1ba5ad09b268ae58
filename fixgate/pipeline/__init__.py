"""Pipeline package: per-commit evaluation and batch scheduling."""

from fixgate.pipeline.batch_runner import BatchRunner
from fixgate.pipeline.commit_evaluator import CommitEvaluator, EvaluatorConfig

__all__ = ["BatchRunner", "CommitEvaluator", "EvaluatorConfig"]
