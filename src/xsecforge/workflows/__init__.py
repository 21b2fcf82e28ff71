"""xsecforge workflows module for standalone unfolding jobs."""

from xsecforge.workflows.unfold_job import run_config_file, run_job

__all__ = ["run_config_file", "run_job"]
