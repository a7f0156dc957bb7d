"""
Celery tasks for achievement evaluation.

Enqueued after every chat turn and every direct check-in or journal write.
Evaluation is idempotent (unique (user_id, type)), so duplicate or concurrent
runs for one user are harmless.
"""
from typing import Dict
import logging

from sqlalchemy.orm import Session

from core.database import get_db_sync
from tasks import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.evaluate_milestones")
def evaluate_milestones(user_id: str) -> Dict:
    """
    Grant any automatic achievements the user has earned.

    Args:
        user_id: identity-provider subject of the user

    Returns:
        Dictionary with the newly granted achievement types
    """
    from services.milestones import check_and_create_auto_achievements

    db: Session = get_db_sync()
    try:
        created = check_and_create_auto_achievements(db, user_id)
        db.commit()
        return {"status": "success", "user_id": user_id, "created": [m.type for m in created]}
    except Exception as e:
        db.rollback()
        logger.error(f"Achievement evaluation failed for user {user_id}: {type(e).__name__}: {e}")
        return {"status": "error", "error": str(e)}
    finally:
        db.close()


def enqueue_milestone_evaluation(user_id: str) -> None:
    """Fire-and-forget; a broker outage must not fail the write that triggered it."""
    try:
        evaluate_milestones.delay(user_id)
    except Exception as e:
        logger.warning(f"Could not enqueue achievement evaluation for user {user_id}: {type(e).__name__}: {e}")
