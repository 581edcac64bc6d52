"""Job-layer exceptions."""


class JobNotFoundError(LookupError):
    """No ``jobs`` row exists for the key (provisioning has not run)."""

    def __init__(self, job_key: str):
        self.job_key = job_key
        super().__init__(f"Job '{job_key}' not found in jobs table (run seed_jobs_defaults first)")


class JobNotRunnableError(LookupError):
    """The key is not in the static registry of runnable jobs."""

    def __init__(self, job_key: str):
        self.job_key = job_key
        super().__init__(f"Job '{job_key}' is not a runnable job")


class InvalidJobMetaError(ValueError):
    def __init__(self, job_key: str, detail: str):
        self.job_key = job_key
        self.detail = detail
        super().__init__(f"Invalid job meta for '{job_key}': {detail}")


class InvalidCronError(ValueError):
    def __init__(self, expression: str, detail: str):
        self.expression = expression
        super().__init__(f"Invalid cron expression '{expression}': {detail}")
