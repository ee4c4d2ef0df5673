"""Celery tasks for humanmark.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from humanmark.tasks.cleanup import humanmark_cleanup

__all__ = ["humanmark_cleanup"]
