"""
Outcome predictor for study sessions.

Every finished session is stored as a normalized record. A prediction is a
similarity-weighted average of past outcomes: sessions that happened at a
similar time of day, on a similar weekday and for a similarly difficult
subject count more. Nothing is fitted; the weights are fixed.
"""
import math
from typing import List, Dict, Any, Optional

import numpy as np
import pandas as pd

from scheduler import WEEKDAYS, time_to_minutes

MODEL_VERSION = "1.0"

# recent_streak is carried with the model but is not part of the similarity
# sum; the streak only adds a flat boost after averaging.
DEFAULT_WEIGHTS = {
    "time_of_day": 0.3,
    "subject_difficulty": 0.4,
    "day_of_week": 0.2,
    "recent_streak": 0.1,
}

COLD_START_PREDICTION = 0.5
STREAK_BOOST = 0.1
STREAK_CAP_DAYS = 7
MIN_INSIGHT_SESSIONS = 5

TIME_BANDS = [("Morning", 0.0, 0.4), ("Afternoon", 0.4, 0.7), ("Evening", 0.7, 1.0)]
DIFFICULTY_BANDS = [("easy", 0.0, 0.4), ("medium", 0.4, 0.7), ("hard", 0.7, 1.0)]

DEFAULT_TIME_SLOTS = ["09:00", "10:00", "11:00", "14:00", "15:00", "16:00", "19:00", "20:00"]
DEFAULT_DAYS = WEEKDAYS[:5]

RECORD_COLUMNS = ["time_of_day", "subject_difficulty", "day_of_week", "completed", "focus_score"]


def normalize_time(time_str: str) -> float:
    return time_to_minutes(time_str) / 60 / 24

def normalize_day(day_name: str) -> float:
    if day_name in WEEKDAYS:
        return WEEKDAYS.index(day_name) / 6
    return 0.5

def normalize_difficulty(difficulty) -> float:
    return float(difficulty) / 5

def normalize_streak(streak) -> float:
    return min(float(streak or 0) / STREAK_CAP_DAYS, 1.0)

def round_percent(value: float) -> int:
    return int(math.floor(value * 100 + 0.5))

def confidence_level(session_count: int) -> str:
    if session_count > 20:
        return "high"
    if session_count > 10:
        return "medium"
    return "low"


class StudyPredictor:

    def __init__(self, training_data: Optional[List[Dict[str, Any]]] = None,
                 weights: Optional[Dict[str, float]] = None, version: str = MODEL_VERSION):
        self.training_data = list(training_data or [])
        self.weights = dict(weights or DEFAULT_WEIGHTS)
        self.version = version

    @classmethod
    def from_blob(cls, blob: Optional[Dict[str, Any]]) -> "StudyPredictor":
        predictor = cls()
        predictor.import_model(blob)
        return predictor

    def add_training_data(self, session: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize one raw session and append it.

        `session` carries time_of_day ("HH:MM"), subject_difficulty (1-5),
        day_of_week (weekday name), completed and an optional focus_score.
        """
        record = {
            "time_of_day": normalize_time(session["time_of_day"]),
            "subject_difficulty": normalize_difficulty(session["subject_difficulty"]),
            "day_of_week": normalize_day(session["day_of_week"]),
            "completed": 1 if session.get("completed") else 0,
            "focus_score": float(session.get("focus_score") or 0.5),
        }
        self.training_data.append(record)
        return record

    def _kernel(self) -> np.ndarray:
        return np.array([
            self.weights.get("time_of_day", DEFAULT_WEIGHTS["time_of_day"]),
            self.weights.get("subject_difficulty", DEFAULT_WEIGHTS["subject_difficulty"]),
            self.weights.get("day_of_week", DEFAULT_WEIGHTS["day_of_week"]),
        ], dtype=float)

    def predict_success(self, time_of_day: str, subject_difficulty, day_of_week: str,
                        recent_streak=0) -> float:
        if not self.training_data:
            return COLD_START_PREDICTION

        history = np.array(
            [[r["time_of_day"], r["subject_difficulty"], r["day_of_week"], r["completed"]]
             for r in self.training_data],
            dtype=float,
        )
        query = np.array([
            normalize_time(time_of_day),
            normalize_difficulty(subject_difficulty),
            normalize_day(day_of_week),
        ])

        similarity = (1 - np.abs(history[:, :3] - query)) @ self._kernel()
        total_similarity = float(similarity.sum())
        if total_similarity > 0:
            prediction = float((similarity * history[:, 3]).sum()) / total_similarity
        else:
            prediction = COLD_START_PREDICTION

        boosted = prediction + normalize_streak(recent_streak) * STREAK_BOOST
        return min(1.0, max(0.0, boosted))

    # ------------------------------------------------------------------
    # insights
    # ------------------------------------------------------------------

    def _frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.training_data, columns=RECORD_COLUMNS)

    @staticmethod
    def _success_rate(frame: pd.DataFrame, column: str, low: float, high: float) -> float:
        band = frame.loc[(frame[column] >= low) & (frame[column] < high)]
        if band.empty:
            return 0.0
        return float((band["completed"] == 1).sum()) / len(band)

    def get_insights(self) -> Dict[str, Any]:
        if len(self.training_data) < MIN_INSIGHT_SESSIONS:
            return {
                "ready": False,
                "message": f"Need more study sessions to learn patterns (minimum {MIN_INSIGHT_SESSIONS})",
            }

        frame = self._frame()
        morning, afternoon, evening = (
            self._success_rate(frame, "time_of_day", low, high) for _, low, high in TIME_BANDS
        )
        if morning > afternoon and morning > evening:
            best_time = "Morning"
        elif afternoon > evening:
            best_time = "Afternoon"
        else:
            best_time = "Evening"
        best_score = max(morning, afternoon, evening)

        easy, medium, hard = (
            self._success_rate(frame, "subject_difficulty", low, high) for _, low, high in DIFFICULTY_BANDS
        )

        return {
            "ready": True,
            "total_sessions": len(self.training_data),
            "best_time_of_day": best_time,
            "best_time_score": round_percent(best_score),
            "morning_success": round_percent(morning),
            "afternoon_success": round_percent(afternoon),
            "evening_success": round_percent(evening),
            "easy_task_success": round_percent(easy),
            "medium_task_success": round_percent(medium),
            "hard_task_success": round_percent(hard),
            "recommendation": self.generate_recommendation(best_time, best_score),
        }

    @staticmethod
    def generate_recommendation(best_time: str, score: float) -> str:
        if score > 0.8:
            return f"You excel during {best_time} sessions! Schedule difficult subjects then."
        if score > 0.6:
            return f"{best_time} works well for you. Consider this for important topics."
        return "Try different study times to find your peak focus hours."

    # ------------------------------------------------------------------
    # slot ranking
    # ------------------------------------------------------------------

    def recommend_slots(self, subjects: List[Dict[str, Any]], recent_streak=0,
                        time_slots: Optional[List[str]] = None,
                        days: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Best (day, time) per subject; the first strictly better candidate wins ties."""
        time_slots = time_slots or DEFAULT_TIME_SLOTS
        days = days or DEFAULT_DAYS

        recommendations = []
        for subject in subjects:
            best_score, best_time, best_day = 0.0, time_slots[0], days[0]
            for slot in time_slots:
                for day in days:
                    score = self.predict_success(slot, subject["difficulty"], day, recent_streak)
                    if score > best_score:
                        best_score, best_time, best_day = score, slot, day
            recommendations.append({
                "subject": subject.get("name"),
                "difficulty": subject["difficulty"],
                "best_day": best_day,
                "best_time": best_time,
                "success_probability": round_percent(best_score),
            })
        return recommendations

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def export_model(self) -> Dict[str, Any]:
        return {
            "training_data": [dict(r) for r in self.training_data],
            "weights": dict(self.weights),
            "version": self.version,
        }

    def import_model(self, blob: Optional[Dict[str, Any]]) -> None:
        if blob and blob.get("training_data") is not None:
            self.training_data = [dict(r) for r in blob["training_data"]]
            self.weights = dict(blob.get("weights") or self.weights)
            self.version = blob.get("version") or self.version
