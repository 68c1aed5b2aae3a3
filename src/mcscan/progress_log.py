import sys
import threading
from datetime import datetime


def timestamp(now=None):
    """en-US style local time, e.g. ``10/19/2026, 03:04:05 PM``."""
    return (now or datetime.now()).strftime("%m/%d/%Y, %I:%M:%S %p")


class ProgressLogger:
    """
    Scan progress output: every line goes to the console and, unless told
    otherwise, is appended to a durable log file. Write failures are
    reported on stderr and never interrupt the scan.
    """

    def __init__(self, path, stream=None):
        self.path = path
        self.stream = stream
        self._lock = threading.Lock()

    def _console(self, line):
        print(line, file=self.stream or sys.stdout, flush=True)

    def log(self, message, console_only=False, file_only=False):
        line = f"[{timestamp()}] {message}"
        if not file_only:
            self._console(line)
        if console_only or not self.path:
            return
        try:
            # one write per line under the lock keeps lines from interleaving
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            print(f"Error writing to log file {self.path}: {e}", file=sys.stderr)

    def reset(self):
        """Truncate the durable log at the start of a scan."""
        if not self.path:
            return
        try:
            with self._lock, open(self.path, "w", encoding="utf-8") as f:
                f.write(f"\n--- NEW SCAN STARTED {timestamp()} ---\n")
        except OSError as e:
            print(f"ERROR initializing log file {self.path}: {e}", file=sys.stderr)
