from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
import itertools

ANNOUNCEMENT_PREFIX = 'announcement-'


class APSchedulerTimers:
    def __init__(self, scheduler=None):
        # A single worker keeps timer callbacks on one logical thread.
        # misfire_grace_time=None: a timer delayed by a busy worker still fires.
        # Periodic refreshes do network I/O, so they get their own worker.
        self.scheduler = scheduler or BackgroundScheduler(
            executors={
                'default': ThreadPoolExecutor(max_workers=1),
                'refresh': ThreadPoolExecutor(max_workers=1)
            },
            job_defaults={'misfire_grace_time': None, 'coalesce': True, 'max_instances': 1},
            timezone='UTC'
        )
        self._ids = itertools.count(1)

    def call_at(self, when, callback, *args):
        job_id = f"{ANNOUNCEMENT_PREFIX}{next(self._ids)}"
        self.scheduler.add_job(
            callback,
            'date',
            run_date=when,
            args=list(args),
            id=job_id,
            name=f"Annuncio {args}"
        )
        return job_id

    def call_every(self, seconds, callback, *args):
        job_id = f"refresh-{next(self._ids)}"
        self.scheduler.add_job(
            callback,
            'interval',
            seconds=seconds,
            args=list(args),
            id=job_id,
            name="Aggiornamento periodico tabellone",
            executor='refresh'
        )
        return job_id

    def cancel(self, handle):
        try:
            self.scheduler.remove_job(handle)
        except JobLookupError:
            # Already fired or removed
            pass

    def pending(self):
        """Number of announcement timers still armed (periodic jobs excluded)."""
        return len([job for job in self.scheduler.get_jobs() if job.id.startswith(ANNOUNCEMENT_PREFIX)])

    def start(self):
        self.scheduler.start()
        print("Timer annunci avviati", flush=True)

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            print("Timer annunci fermati", flush=True)
