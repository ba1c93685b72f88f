# backend/storage.py
from datetime import datetime, date
from typing import List, Dict, Any, Optional

from models import Subject, WeekConfig, StudyBlock, Streak, StudyModel


class PlannerStore:
    """
    Data access used by regeneration and the predictor endpoints. Everything
    it returns is a plain dict, so the algorithms never touch ORM objects.
    """

    def __init__(self, session):
        self.session = session

    def get_week_config(self, user_id: int) -> Optional[Dict[str, Any]]:
        config = WeekConfig.query.filter_by(user_id=user_id).first()
        if config is None:
            return None
        return {
            "total_available_hours": config.total_available_hours,
            "week_start_date": config.week_start_date,
            "free_time_blocks": [dict(b) for b in (config.free_time_blocks or [])],
        }

    def get_subjects(self, user_id: int) -> List[Dict[str, Any]]:
        subjects = Subject.query.filter_by(user_id=user_id).order_by(Subject.id).all()
        return [{
            "id": s.id,
            "name": s.name,
            "difficulty": s.difficulty,
            "start_date": s.start_date,
            "exam_date": s.exam_date,
            "priority_score": s.priority_score,
        } for s in subjects]

    def save_priority(self, subject_id: int, priority_score: float) -> None:
        subject = self.session.get(Subject, subject_id)
        if subject is None:
            return
        subject.priority_score = priority_score
        self.session.commit()

    def save_allocations(self, allocations: Dict[int, float]) -> None:
        for subject_id, hours in allocations.items():
            subject = self.session.get(Subject, subject_id)
            if subject is not None:
                subject.allocated_time = hours
        self.session.commit()

    def replace_schedule(self, user_id: int, blocks: List[Dict[str, Any]],
                         week_start_date: Optional[date] = None) -> int:
        """Drop every stored block for the user and insert the new set in one commit."""
        try:
            StudyBlock.query.filter_by(user_id=user_id).delete(synchronize_session=False)
            rows = [StudyBlock(
                user_id=user_id,
                subject_id=b["subject_id"],
                day=b["day"],
                start_time=b["start_time"],
                end_time=b["end_time"],
                duration_minutes=b["duration_minutes"],
                week_start_date=week_start_date,
                completed=False,
            ) for b in blocks]
            self.session.add_all(rows)
            self.session.commit()
            return len(rows)
        except Exception:
            self.session.rollback()
            raise

    def clear_schedule(self, user_id: int) -> int:
        deleted = StudyBlock.query.filter_by(user_id=user_id).delete(synchronize_session=False)
        self.session.commit()
        return deleted

    def load_model_blob(self, user_id: int) -> Optional[Dict[str, Any]]:
        row = StudyModel.query.filter_by(user_id=user_id).first()
        return row.to_blob() if row else None

    def save_model_blob(self, user_id: int, blob: Dict[str, Any]) -> Dict[str, Any]:
        row = StudyModel.query.filter_by(user_id=user_id).first()
        if row is None:
            row = StudyModel(user_id=user_id)
            self.session.add(row)
        row.training_data = list(blob.get("training_data") or [])
        if blob.get("weights"):
            row.weights = dict(blob["weights"])
        if blob.get("version"):
            row.version = blob["version"]
        row.last_trained = datetime.utcnow()
        self.session.commit()
        return row.to_blob()

    def current_streak(self, user_id: int, today: Optional[date] = None) -> int:
        streak = Streak.query.filter_by(user_id=user_id).first()
        return streak.current(today) if streak else 0
