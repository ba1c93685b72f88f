# backend/models.py
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, date

from scheduler import WEEKDAYS, days_between, this_week_monday
from predictor import DEFAULT_WEIGHTS, MODEL_VERSION

db = SQLAlchemy()

class User(db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "email": self.email}

class Subject(db.Model):
    __tablename__ = "subjects"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    difficulty = db.Column(db.Integer, nullable=False, default=3)
    start_date = db.Column(db.Date, nullable=False, default=date.today)
    exam_date = db.Column(db.Date, nullable=False)
    target_hours = db.Column(db.Float, nullable=False, default=0.0)
    allocated_time = db.Column(db.Float, nullable=False, default=0.0)
    priority_score = db.Column(db.Float, nullable=False, default=0.0)
    tags = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship("User", backref="subjects")
    blocks = db.relationship("StudyBlock", backref="subject", cascade="all, delete-orphan")
    sessions = db.relationship("SessionHistory", backref="subject", cascade="all, delete-orphan")

    def priority_inputs(self):
        return {"start_date": self.start_date, "exam_date": self.exam_date, "difficulty": self.difficulty}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "difficulty": self.difficulty,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "exam_date": self.exam_date.isoformat() if self.exam_date else None,
            "target_hours": self.target_hours,
            "allocated_time": self.allocated_time,
            "priority_score": self.priority_score,
            "tags": list(self.tags or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

class WeekConfig(db.Model):
    """
    Weekly availability for one user: an hour budget plus ordered free-time
    windows stored as [{"day": "Monday", "start_time": "09:00", "end_time": "11:00"}].
    """
    __tablename__ = "week_configs"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    total_available_hours = db.Column(db.Float, nullable=False, default=40.0)
    week_start_date = db.Column(db.Date, nullable=False, default=this_week_monday)
    free_time_blocks = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", backref=db.backref("week_config", uselist=False))

    def to_dict(self):
        return {
            "total_available_hours": self.total_available_hours,
            "week_start_date": self.week_start_date.isoformat() if self.week_start_date else None,
            "free_time_blocks": [dict(b) for b in (self.free_time_blocks or [])],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

class StudyBlock(db.Model):
    __tablename__ = "study_blocks"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id"), nullable=False)
    day = db.Column(db.String(16), nullable=False)
    start_time = db.Column(db.String(5), nullable=False)
    end_time = db.Column(db.String(5), nullable=False)
    duration_minutes = db.Column(db.Float, nullable=False)
    week_start_date = db.Column(db.Date, nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)

    def sort_key(self):
        day_index = WEEKDAYS.index(self.day) if self.day in WEEKDAYS else len(WEEKDAYS)
        return (day_index, self.start_time)

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "subject_name": self.subject.name if self.subject else None,
            "day": self.day,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_minutes": self.duration_minutes,
            "week_start_date": self.week_start_date.isoformat() if self.week_start_date else None,
            "completed": self.completed,
        }

class SessionHistory(db.Model):
    """
    One finished study session. Feeds the streak, the outcome predictor and
    the analytics view.
    """
    __tablename__ = "session_history"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id"), nullable=False)
    minutes = db.Column(db.Float, nullable=False)
    completed = db.Column(db.Boolean, nullable=False, default=True)
    focus_score = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship("User", backref="sessions")

class Streak(db.Model):
    __tablename__ = "streaks"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_study_date = db.Column(db.Date, nullable=True)
    total_study_days = db.Column(db.Integer, nullable=False, default=0)

    def register_study(self, today=None):
        today = today or date.today()
        if self.last_study_date is None:
            self.current_streak = 1
            self.longest_streak = max(self.longest_streak or 0, 1)
            self.total_study_days = (self.total_study_days or 0) + 1
        else:
            gap = days_between(self.last_study_date, today)
            # same day: counters stay as they are
            if gap == 1:
                self.current_streak = (self.current_streak or 0) + 1
                self.longest_streak = max(self.longest_streak or 0, self.current_streak)
                self.total_study_days = (self.total_study_days or 0) + 1
            elif gap > 1:
                self.current_streak = 1
                self.total_study_days = (self.total_study_days or 0) + 1
        self.last_study_date = today

    def current(self, today=None):
        """Streak as of today; a missed day means it is already broken."""
        if self.last_study_date is None:
            return 0
        today = today or date.today()
        if days_between(self.last_study_date, today) > 1:
            return 0
        return self.current_streak or 0

    def to_dict(self, today=None):
        return {
            "current_streak": self.current(today),
            "longest_streak": self.longest_streak or 0,
            "total_study_days": self.total_study_days or 0,
            "last_study_date": self.last_study_date.isoformat() if self.last_study_date else None,
        }

class StudyModel(db.Model):
    """
    Persisted predictor state, one row per user. The training data, weights
    and version are kept as an opaque blob.
    """
    __tablename__ = "study_models"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)
    training_data = db.Column(db.JSON, nullable=False, default=list)
    weights = db.Column(db.JSON, nullable=False, default=lambda: dict(DEFAULT_WEIGHTS))
    version = db.Column(db.String(16), nullable=False, default=MODEL_VERSION)
    last_trained = db.Column(db.DateTime, default=datetime.utcnow)

    def to_blob(self):
        return {
            "training_data": list(self.training_data or []),
            "weights": dict(self.weights or DEFAULT_WEIGHTS),
            "version": self.version,
            "last_trained": self.last_trained.isoformat() if self.last_trained else None,
        }
