from sqlgate.runs.registry import RunContext, RunRegistry, new_run_id

__all__ = ["RunContext", "RunRegistry", "new_run_id"]
