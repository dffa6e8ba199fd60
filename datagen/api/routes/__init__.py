from . import jobs, metrics, tasks, users

__all__ = ["jobs", "metrics", "tasks", "users"]
