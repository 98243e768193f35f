import time
import threading

from announcer.errors import CircuitOpenError


class CircuitBreaker:
    def __init__(self, failure_threshold=3, recovery_timeout=30, clock=time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self.failures = 0
        self.state = 'CLOSED'
        self.last_failure_time = 0
        self.lock = threading.Lock()

    def call(self, func, *args, **kwargs):

        with self.lock:
            if self.state == 'OPEN':
                if self.clock() - self.last_failure_time > self.recovery_timeout:
                    # One trial request is let through
                    self.state = 'HALF_OPEN'
                    print("CircuitBreaker: HALF_OPEN - verifico il Dashboard API...", flush=True)
                else:
                    raise CircuitOpenError("Dashboard API non raggiungibile (circuito aperto)")

        try:
            result = func(*args, **kwargs)
        except Exception:
            with self.lock:
                self.failures += 1
                self.last_failure_time = self.clock()
                # A failed trial request reopens immediately
                if self.state == 'HALF_OPEN' or self.failures >= self.failure_threshold:
                    self.state = 'OPEN'
                    print(f"CircuitBreaker: OPEN - {self.failures} errori consecutivi.", flush=True)
            raise

        with self.lock:
            if self.state == 'HALF_OPEN':
                print("CircuitBreaker: CLOSED - servizio ripristinato.", flush=True)
            self.state = 'CLOSED'
            self.failures = 0
        return result
