# trust_engine/tasks.py
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from trust_engine.crud import Database, expire_action_tokens

log = logging.getLogger("tasks")


def expire_stale_action_tokens(db: Database) -> int:
    log.info("Running action token expiry check...")
    expired = expire_action_tokens(db)
    if expired:
        log.info("Marked %d action token(s) as expired", expired)
    return expired


def build_scheduler(db: Database, interval_minutes: int) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(expire_stale_action_tokens, "interval", minutes=interval_minutes, args=[db])
    return scheduler
