#!/usr/bin/env python3
"""
Security Round Retention Scheduler
==================================

Deletes security rounds (and their photos) once they are older than the
retention window, 7 days by default. Can be run once (cron) or as a
standalone scheduler that sweeps daily.
"""

import os
import time
from datetime import datetime, timedelta

import schedule

DEFAULT_RETENTION_DAYS = 7

def cleanup_old_rounds(db, round_model, photo_storage=None, retention_days=DEFAULT_RETENTION_DAYS,
                       logger_handler=None, now=None):
    """
    Delete rounds created more than ``retention_days`` ago

    Args:
        db: Flask-SQLAlchemy instance
        round_model: SecurityRound model class
        photo_storage (PhotoStorage): Store holding round photos, optional
        retention_days (int): Age in days after which rounds are deleted
        logger_handler (AppLogger): Logger, optional
        now (datetime): Sweep time, defaults to utcnow

    Returns:
        int: Number of rounds deleted (0 when the sweep failed)
    """
    cutoff_date = (now or datetime.utcnow()) - timedelta(days=retention_days)

    try:
        expired = db.session.query(round_model).filter(
            round_model.created_at < cutoff_date
        ).all()

        if not expired:
            if logger_handler:
                logger_handler.log_cleanup(round_model.__tablename__, 0, cutoff_date)
            return 0

        photo_urls = [row.photo_url for row in expired]
        # Row by row through the session so change subscribers see each DELETE
        for row in expired:
            db.session.delete(row)
        db.session.commit()
        deleted_count = len(expired)

    except Exception as e:
        db.session.rollback()
        if logger_handler:
            logger_handler.log_database_error('cleanup_old_rounds', e)
        return 0

    # Photos go after the commit; a leftover file is harmless, a dangling row is not
    if photo_storage:
        for photo_url in photo_urls:
            try:
                photo_storage.delete(photo_url)
            except OSError as e:
                if logger_handler:
                    logger_handler.logger.warning(f"Could not delete photo {photo_url}: {e}")

    if logger_handler:
        logger_handler.log_cleanup(round_model.__tablename__, deleted_count, cutoff_date)

    return deleted_count

class RetentionScheduler:
    """Daily retention sweep for security rounds"""

    def __init__(self, app, retention_days=None, run_at=None):
        self.app = app
        self.retention_days = retention_days or int(app.config.get('ROUND_RETENTION_DAYS', DEFAULT_RETENTION_DAYS))
        self.run_at = run_at or app.config.get('CLEANUP_TIME', '02:00')
        self.is_running = False
        self.last_run_time = None
        self.last_deleted_count = None

    @property
    def logger(self):
        return self.app.logger_handler.logger

    def run_cleanup_job(self):
        """Execute one sweep; failures are logged and never stop the schedule"""
        if self.is_running:
            self.logger.warning("Retention cleanup already in progress, skipping this run")
            return None

        self.is_running = True
        self.logger.info(f"Starting retention cleanup (keeping {self.retention_days} days)")

        try:
            with self.app.app_context():
                self.last_deleted_count = cleanup_old_rounds(
                    self.app.extensions['sqlalchemy'],
                    self.app.round_model,
                    photo_storage=self.app.photo_storage,
                    retention_days=self.retention_days,
                    logger_handler=self.app.logger_handler
                )
                self.app.logger_handler.cleanup_old_logs()
            self.last_run_time = datetime.now()
            return self.last_deleted_count

        except Exception as e:
            self.logger.error(f"Retention cleanup failed: {e}")
            return None

        finally:
            self.is_running = False

    def schedule_jobs(self, scheduler=None):
        """Register the daily sweep on ``scheduler`` (the global schedule by default)"""
        scheduler = scheduler or schedule.default_scheduler
        return scheduler.every().day.at(self.run_at).do(self.run_cleanup_job)

    def start_scheduler(self):
        """Start the blocking scheduler loop"""
        self.logger.info(f"Starting retention scheduler (daily at {self.run_at})")
        self.schedule_jobs()

        while True:
            schedule.run_pending()
            time.sleep(60)

def main():
    """Main execution function"""
    import argparse

    parser = argparse.ArgumentParser(description='Security Round Retention Scheduler')
    parser.add_argument('--mode', choices=['once', 'continuous'],
                       default='once', help='Run a single sweep or keep sweeping daily')
    parser.add_argument('--days', type=int, default=int(os.getenv('ROUND_RETENTION_DAYS', DEFAULT_RETENTION_DAYS)),
                       help='Retention window in days')
    parser.add_argument('--at', default=os.getenv('CLEANUP_TIME', '02:00'),
                       help='Daily run time (HH:MM) for continuous mode')

    args = parser.parse_args()

    from app import app

    scheduler = RetentionScheduler(app, retention_days=args.days, run_at=args.at)

    if args.mode == 'once':
        print("Running single retention cleanup...")
        deleted = scheduler.run_cleanup_job()
        print(f"Deleted {deleted or 0} expired security rounds")
    else:
        print(f"Starting continuous retention cleanup (daily at {args.at})...")
        scheduler.start_scheduler()

if __name__ == "__main__":
    main()
