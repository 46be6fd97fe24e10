import logging
import re

# Matches the request line and status in both runserver and gunicorn access lines:
#   "GET /readyz HTTP/1.1" 200 37 ...
_ACCESS_LINE = re.compile(r'"(?P<method>[A-Z]+) (?P<path>\S+) HTTP/[\d.]+" (?P<status>\d{3})')


class HealthEndpointFilter(logging.Filter):
    """Drop access-log lines for successful orchestrator probes."""

    probe_paths: frozenset[str] = frozenset({"/healthz", "/readyz"})

    def filter(self, record: logging.LogRecord) -> bool:
        match = _ACCESS_LINE.search(record.getMessage())
        if match is None:
            return True

        path = match.group("path").split("?", 1)[0].rstrip("/") or "/"
        if path not in self.probe_paths:
            return True
        return not match.group("status").startswith("2")
