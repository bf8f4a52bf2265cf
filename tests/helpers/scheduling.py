"""Task scheduler test double."""

from typing import Any, Callable, List, Optional, Tuple

from activity_notify.scheduler.service import TaskScheduler


class RecordingScheduler(TaskScheduler):
    """Records scheduled tasks so tests can run them one by one."""

    def __init__(self):
        self.tasks: List[Tuple[float, Callable[..., Any], tuple]] = []

    def schedule(self, delay_seconds: float, func: Callable[..., Any], *args: Any) -> Optional[str]:
        self.tasks.append((delay_seconds, func, args))
        return f"task-{len(self.tasks)}"

    @property
    def delays(self) -> List[float]:
        return [delay for delay, _, _ in self.tasks]

    def run_next(self) -> Any:
        """Pop and run the oldest pending task."""
        _, func, args = self.tasks.pop(0)
        return func(*args)

    def run_all(self) -> List[Any]:
        results = []
        while self.tasks:
            results.append(self.run_next())
        return results
