"""
Device history service.

Builds the list of completed rounds a scoring device took part in, so the
tablet can show its own history without keeping client-side storage.
Only rounds where every device finished (status COMPLETED) are included.
"""
from typing import List, Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import DeviceProgress, Participant, Round, RoundStatus, ScoreEntry


def get_device_round_history(device_id: str, db: Session, limit: int = 20) -> List[Dict[str, Any]]:
    """
    Return completed rounds the device finished, newest first.

    Each entry carries the totals of the participants the device scored
    (total strokes and distinct holes completed).
    """
    rows = (
        db.query(DeviceProgress, Round)
        .join(Round, DeviceProgress.round_id == Round.id)
        .filter(
            DeviceProgress.device_id == device_id,
            DeviceProgress.finished == True,  # noqa: E712
            Round.status == RoundStatus.COMPLETED
        )
        .order_by(Round.completed_at.desc(), DeviceProgress.finished_at.desc())
        .limit(limit)
        .all()
    )

    history: List[Dict[str, Any]] = []

    for device, round_obj in rows:
        total_strokes, holes_completed = (
            db.query(
                func.coalesce(func.sum(ScoreEntry.value), 0),
                func.count(func.distinct(ScoreEntry.unit))
            )
            .join(Participant, Participant.id == ScoreEntry.participant_id)
            .filter(
                ScoreEntry.round_id == round_obj.id,
                Participant.device_id == device_id
            )
            .one()
        )

        history.append({
            "round_id": round_obj.id,
            "name": round_obj.name,
            "completed_at": round_obj.completed_at or device.finished_at,
            "finished_at": device.finished_at,
            "total_strokes": int(total_strokes),
            "holes_completed": int(holes_completed),
        })

    return history
