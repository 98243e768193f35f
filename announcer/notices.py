import threading
from collections import deque
from datetime import datetime, timezone


class NoticeBoard:
    """Operator-facing notices (the station's toasts), newest last."""

    def __init__(self, max_notices=50, clock=None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._notices = deque(maxlen=max_notices)
        self._lock = threading.Lock()

    def _push(self, level, title, message):
        notice = {
            'level': level,
            'title': title,
            'message': message,
            'created_at': self.clock().isoformat()
        }
        with self._lock:
            self._notices.append(notice)
        print(f"[{level.upper()}] {title}: {message}", flush=True)
        return notice

    def info(self, title, message):
        return self._push('info', title, message)

    def warning(self, title, message):
        return self._push('warning', title, message)

    def error(self, title, message):
        return self._push('error', title, message)

    def recent(self, limit=None):
        with self._lock:
            notices = list(self._notices)
        if limit:
            notices = notices[-limit:]
        return notices
