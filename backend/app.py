import logging
import re
import traceback
from datetime import date, datetime, timedelta

from flask import Flask, Blueprint, request, jsonify, current_app

from config import Config
from models import db, User, Subject, WeekConfig, StudyBlock, SessionHistory, Streak
from predictor import StudyPredictor, confidence_level, round_percent, MIN_INSIGHT_SESSIONS
from regeneration import RegenerationQueue, regenerate_schedule
from scheduler import WEEKDAYS, calculate_priority_score, calculate_progress
from storage import PlannerStore

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

bp = Blueprint("api", __name__, url_prefix="/api/users/<int:user_id>")


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    app.register_blueprint(bp)

    def run_regeneration(user_id, reason):
        with app.app_context():
            return regenerate_schedule(PlannerStore(db.session), user_id, reason)

    app.extensions["regeneration_queue"] = RegenerationQueue(
        run_regeneration, run_async=app.config["REGENERATION_ASYNC"]
    )

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"status": "error", "message": "not found"}), 404

    with app.app_context():
        db.create_all()

    return app


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

def _error(message, code=400):
    return jsonify({"status": "error", "message": message}), code

def _load_user(user_id):
    return User.query.filter_by(id=user_id).first_or_404()

def _enqueue_regeneration(user_id, reason):
    queued = current_app.extensions["regeneration_queue"].submit(user_id, reason)
    current_app.logger.info("Regeneration %s for user %s (%s)",
                            "queued" if queued else "not triggered", user_id, reason)
    return queued

def _parse_date(value, field):
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValueError(f"Invalid {field}")

def _parse_difficulty(value):
    try:
        difficulty = int(value)
    except (TypeError, ValueError):
        raise ValueError("Difficulty must be between 1 and 5")
    if difficulty < 1 or difficulty > 5:
        raise ValueError("Difficulty must be between 1 and 5")
    return difficulty

def _parse_subject_payload(body, partial=False):
    data = {}
    if not partial:
        if not body.get("name") or body.get("difficulty") is None or not body.get("exam_date"):
            raise ValueError("Please provide all required fields (name, difficulty, exam_date)")

    if body.get("name"):
        data["name"] = str(body["name"]).strip()
    if body.get("difficulty") is not None:
        data["difficulty"] = _parse_difficulty(body["difficulty"])
    if body.get("exam_date"):
        data["exam_date"] = _parse_date(body["exam_date"], "exam date")
    if body.get("start_date"):
        data["start_date"] = _parse_date(body["start_date"], "start date")
    if body.get("target_hours") is not None:
        target = float(body["target_hours"])
        if target < 0:
            raise ValueError("target_hours must not be negative")
        data["target_hours"] = target
    if body.get("tags") is not None:
        if not isinstance(body["tags"], list):
            raise ValueError("tags must be a list")
        data["tags"] = [str(t) for t in body["tags"]]
    return data

def _parse_free_time_blocks(raw):
    if not isinstance(raw, list):
        raise ValueError("free_time_blocks must be a list")
    blocks = []
    for item in raw:
        day = item.get("day") if isinstance(item, dict) else None
        start = item.get("start_time") if isinstance(item, dict) else None
        end = item.get("end_time") if isinstance(item, dict) else None
        if day not in WEEKDAYS:
            raise ValueError(f"Invalid day: {day}")
        if not start or not TIME_RE.match(start) or not end or not TIME_RE.match(end):
            raise ValueError("start_time and end_time must be HH:MM")
        blocks.append({"day": day, "start_time": start, "end_time": end})
    return blocks

def _subject_or_404(user_id, subject_id):
    return Subject.query.filter_by(id=subject_id, user_id=user_id).first_or_404()

def _schedule_for(user_id):
    blocks = StudyBlock.query.filter_by(user_id=user_id).all()
    return [b.to_dict() for b in sorted(blocks, key=lambda b: b.sort_key())]


# ---------------------------------------------------------------------------
# subjects
# ---------------------------------------------------------------------------

@bp.route("/subjects", methods=["GET"])
def list_subjects(user_id):
    _load_user(user_id)
    subjects = Subject.query.filter_by(user_id=user_id).order_by(Subject.created_at.desc()).all()
    return jsonify({"status": "ok", "subjects": [s.to_dict() for s in subjects]})


@bp.route("/subjects", methods=["POST"])
def create_subject(user_id):
    _load_user(user_id)
    body = request.get_json() or {}
    try:
        data = _parse_subject_payload(body)
    except (TypeError, ValueError) as e:
        return _error(str(e))

    subject = Subject(user_id=user_id, **data)
    if subject.start_date is None:
        subject.start_date = date.today()
    subject.priority_score = calculate_priority_score(subject.priority_inputs())
    db.session.add(subject)
    db.session.commit()

    _enqueue_regeneration(user_id, "subject_added")
    return jsonify({"status": "ok", "subject": subject.to_dict()}), 201


@bp.route("/subjects/<int:subject_id>", methods=["GET"])
def get_subject(user_id, subject_id):
    subject = _subject_or_404(user_id, subject_id)
    return jsonify({"status": "ok", "subject": subject.to_dict()})


@bp.route("/subjects/<int:subject_id>", methods=["PUT"])
def update_subject(user_id, subject_id):
    subject = _subject_or_404(user_id, subject_id)
    body = request.get_json() or {}
    try:
        data = _parse_subject_payload(body, partial=True)
    except (TypeError, ValueError) as e:
        return _error(str(e))

    for key, value in data.items():
        setattr(subject, key, value)

    reprioritise = any(k in data for k in ("exam_date", "start_date", "difficulty"))
    if reprioritise:
        subject.priority_score = calculate_priority_score(subject.priority_inputs())
    db.session.commit()

    if reprioritise:
        _enqueue_regeneration(user_id, "subject_updated")
    return jsonify({"status": "ok", "subject": subject.to_dict()})


@bp.route("/subjects/<int:subject_id>", methods=["DELETE"])
def delete_subject(user_id, subject_id):
    subject = _subject_or_404(user_id, subject_id)
    db.session.delete(subject)
    db.session.commit()

    _enqueue_regeneration(user_id, "subject_deleted")
    return jsonify({"status": "ok", "message": "Subject and related data deleted"})


@bp.route("/subjects/priority", methods=["POST"])
def recalculate_priorities(user_id):
    _load_user(user_id)
    subjects = Subject.query.filter_by(user_id=user_id).all()
    now = datetime.now()
    for s in subjects:
        s.priority_score = calculate_priority_score(s.priority_inputs(), now)
    db.session.commit()

    subjects.sort(key=lambda s: s.priority_score, reverse=True)
    return jsonify({
        "status": "ok",
        "message": f"Updated {len(subjects)} subjects",
        "subjects": [s.to_dict() for s in subjects],
    })


# ---------------------------------------------------------------------------
# weekly availability
# ---------------------------------------------------------------------------

@bp.route("/week_config", methods=["GET"])
def get_week_config(user_id):
    _load_user(user_id)
    config = WeekConfig.query.filter_by(user_id=user_id).first()
    if config is None:
        config = WeekConfig(user_id=user_id, total_available_hours=40.0, free_time_blocks=[])
        db.session.add(config)
        db.session.commit()
    return jsonify({"status": "ok", "config": config.to_dict()})


@bp.route("/week_config", methods=["PUT"])
def update_week_config(user_id):
    _load_user(user_id)
    body = request.get_json() or {}
    try:
        hours = float(body.get("total_available_hours", 40))
        if hours < 0:
            raise ValueError("total_available_hours must not be negative")
        blocks = _parse_free_time_blocks(body.get("free_time_blocks", []))
        week_start = _parse_date(body["week_start_date"], "week start date") if body.get("week_start_date") else None
    except (TypeError, ValueError) as e:
        return _error(str(e))

    config = WeekConfig.query.filter_by(user_id=user_id).first()
    if config is None:
        config = WeekConfig(user_id=user_id)
        db.session.add(config)
    config.total_available_hours = hours
    config.free_time_blocks = blocks
    if week_start:
        config.week_start_date = week_start
    config.updated_at = datetime.utcnow()
    db.session.commit()

    _enqueue_regeneration(user_id, "availability_changed")
    return jsonify({"status": "ok", "message": "Week configuration updated", "config": config.to_dict()})


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------

@bp.route("/schedule", methods=["GET"])
def get_schedule(user_id):
    _load_user(user_id)
    return jsonify({"status": "ok", "schedule": _schedule_for(user_id)})


@bp.route("/schedule/generate", methods=["POST"])
def generate_weekly_schedule(user_id):
    _load_user(user_id)
    # end the read transaction so the blocks written by the run are visible below
    db.session.commit()
    result = current_app.extensions["regeneration_queue"].run_now(user_id, "manual")
    if result.skipped:
        return _error(result.message)
    if not result.success:
        current_app.logger.error("Schedule generation failed for user %s: %s", user_id, result.message)
        return _error("Failed to generate schedule", 500)

    return jsonify({
        "status": "ok",
        "message": "Schedule generated successfully",
        "schedule": _schedule_for(user_id),
        "total_blocks": result.blocks_created,
    })


@bp.route("/schedule", methods=["DELETE"])
def delete_schedule(user_id):
    _load_user(user_id)
    deleted = PlannerStore(db.session).clear_schedule(user_id)
    return jsonify({"status": "ok", "message": "Schedule deleted", "deleted": deleted})


# ---------------------------------------------------------------------------
# study sessions / streak / analytics
# ---------------------------------------------------------------------------

@bp.route("/sessions", methods=["POST"])
def record_session(user_id):
    """
    Record a finished study session.
    Expected JSON:
    {
      "subject_id": 3,
      "minutes": 45,
      "time_of_day": "09:30",      (optional, defaults to now)
      "day_of_week": "Monday"      (optional, defaults to today)
    }
    """
    _load_user(user_id)
    body = request.get_json() or {}
    try:
        minutes = float(body.get("minutes", 0))
    except (TypeError, ValueError):
        minutes = 0
    if minutes < 1:
        return _error("Study time must be at least 1 minute")
    subject = Subject.query.filter_by(id=body.get("subject_id"), user_id=user_id).first()
    if subject is None:
        return _error("Subject not found", 404)

    now = datetime.now()
    time_of_day = body.get("time_of_day") or now.strftime("%H:%M")
    day_of_week = body.get("day_of_week") or WEEKDAYS[now.weekday()]
    if not TIME_RE.match(time_of_day):
        return _error("time_of_day must be HH:MM")

    completed = minutes >= 5
    focus_score = min(1.0, minutes / 60)
    session_row = SessionHistory(
        user_id=user_id,
        subject_id=subject.id,
        minutes=minutes,
        completed=completed,
        focus_score=focus_score,
    )
    db.session.add(session_row)

    streak = Streak.query.filter_by(user_id=user_id).first()
    if streak is None:
        streak = Streak(user_id=user_id, current_streak=0, longest_streak=0, total_study_days=0)
        db.session.add(streak)
    streak.register_study(now.date())
    db.session.commit()

    training_sessions = None
    try:
        store = PlannerStore(db.session)
        predictor = StudyPredictor.from_blob(store.load_model_blob(user_id))
        predictor.add_training_data({
            "time_of_day": time_of_day,
            "subject_difficulty": subject.difficulty,
            "day_of_week": day_of_week,
            "completed": completed,
            "focus_score": focus_score,
        })
        store.save_model_blob(user_id, predictor.export_model())
        training_sessions = len(predictor.training_data)
        current_app.logger.info("Predictor trained for user %s: %d sessions", user_id, training_sessions)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error("Predictor training failed: %s", e)
        current_app.logger.error(traceback.format_exc())

    _enqueue_regeneration(user_id, "study_session_completed")
    return jsonify({
        "status": "ok",
        "message": "Study session recorded",
        "session_id": session_row.id,
        "session_minutes": minutes,
        "streak": streak.to_dict(now.date()),
        "training_sessions": training_sessions,
    })


@bp.route("/streak", methods=["GET"])
def get_streak(user_id):
    _load_user(user_id)
    streak = Streak.query.filter_by(user_id=user_id).first()
    if streak is None:
        return jsonify({"status": "ok", "streak": {
            "current_streak": 0, "longest_streak": 0, "total_study_days": 0, "last_study_date": None,
        }})
    return jsonify({"status": "ok", "streak": streak.to_dict()})


@bp.route("/analytics", methods=["GET"])
def get_analytics(user_id):
    _load_user(user_id)
    subjects = Subject.query.filter_by(user_id=user_id).all()
    sessions = SessionHistory.query.filter_by(user_id=user_id).all()

    minutes_by_subject = {}
    for s in sessions:
        minutes_by_subject[s.subject_id] = minutes_by_subject.get(s.subject_id, 0.0) + s.minutes

    subject_progress = []
    for subject in subjects:
        spent = minutes_by_subject.get(subject.id, 0.0)
        subject_progress.append({
            "subject_id": subject.id,
            "subject": subject.name,
            "difficulty": subject.difficulty,
            "exam_date": subject.exam_date.isoformat(),
            "time_spent": spent,
            "target_minutes": subject.target_hours * 60,
            "progress": round(calculate_progress(spent, subject.target_hours)),
        })

    week_ago = datetime.utcnow() - timedelta(days=7)
    weekly = {day: 0.0 for day in WEEKDAYS}
    for s in sessions:
        if s.created_at and s.created_at >= week_ago:
            weekly[WEEKDAYS[s.created_at.weekday()]] += s.minutes

    return jsonify({"status": "ok", "analytics": {
        "total_subjects": len(subjects),
        "total_study_time": sum(minutes_by_subject.values()),
        "subject_progress": subject_progress,
        "weekly_chart": [{"day": day, "minutes": weekly[day]} for day in WEEKDAYS],
    }})


# ---------------------------------------------------------------------------
# predictor
# ---------------------------------------------------------------------------

@bp.route("/ai/insights", methods=["GET"])
def ai_insights(user_id):
    _load_user(user_id)
    predictor = StudyPredictor.from_blob(PlannerStore(db.session).load_model_blob(user_id))
    return jsonify({"status": "ok", "insights": predictor.get_insights()})


@bp.route("/ai/train", methods=["POST"])
def ai_train(user_id):
    _load_user(user_id)
    body = request.get_json() or {}
    time_of_day = body.get("time_of_day")
    day_of_week = body.get("day_of_week")
    if not time_of_day or body.get("subject_difficulty") is None or not day_of_week:
        return _error("Missing required fields")
    if not TIME_RE.match(time_of_day):
        return _error("time_of_day must be HH:MM")
    try:
        difficulty = _parse_difficulty(body["subject_difficulty"])
    except ValueError as e:
        return _error(str(e))

    store = PlannerStore(db.session)
    predictor = StudyPredictor.from_blob(store.load_model_blob(user_id))
    predictor.add_training_data({
        "time_of_day": time_of_day,
        "subject_difficulty": difficulty,
        "day_of_week": day_of_week,
        "completed": body.get("completed") is not False,
        "focus_score": body.get("focus_score") or 0.7,
    })
    store.save_model_blob(user_id, predictor.export_model())
    return jsonify({
        "status": "ok",
        "message": "Predictor trained",
        "total_sessions": len(predictor.training_data),
    })


@bp.route("/ai/predict", methods=["GET"])
def ai_predict(user_id):
    _load_user(user_id)
    time_of_day = request.args.get("time_of_day", "")
    day_of_week = request.args.get("day_of_week", "")
    if not TIME_RE.match(time_of_day) or request.args.get("subject_difficulty") is None:
        return _error("time_of_day (HH:MM), subject_difficulty and day_of_week are required")
    try:
        difficulty = _parse_difficulty(request.args["subject_difficulty"])
    except ValueError as e:
        return _error(str(e))

    store = PlannerStore(db.session)
    predictor = StudyPredictor.from_blob(store.load_model_blob(user_id))
    if not predictor.training_data:
        return jsonify({
            "status": "ok",
            "prediction": 50,
            "confidence": "low",
            "message": "Not enough data yet. Keep studying to train the predictor!",
        })

    prediction = predictor.predict_success(
        time_of_day, difficulty, day_of_week, store.current_streak(user_id)
    )
    percent = round_percent(prediction)
    return jsonify({
        "status": "ok",
        "prediction": percent,
        "confidence": confidence_level(len(predictor.training_data)),
        "message": f"{percent}% chance of successful study session",
    })


@bp.route("/ai/optimize", methods=["GET"])
def ai_optimize(user_id):
    _load_user(user_id)
    store = PlannerStore(db.session)
    predictor = StudyPredictor.from_blob(store.load_model_blob(user_id))
    if len(predictor.training_data) < MIN_INSIGHT_SESSIONS:
        return jsonify({
            "status": "ok",
            "optimized": False,
            "message": f"Need at least {MIN_INSIGHT_SESSIONS} study sessions to optimize schedule",
        })

    subjects = Subject.query.filter_by(user_id=user_id).order_by(Subject.priority_score.desc()).all()
    if not subjects:
        return jsonify({"status": "ok", "optimized": False, "message": "No subjects found"})

    recommendations = predictor.recommend_slots(
        [{"name": s.name, "difficulty": s.difficulty} for s in subjects],
        store.current_streak(user_id),
    )
    return jsonify({"status": "ok", "optimized": True, "recommendations": recommendations})


if __name__ == "__main__":
    create_app().run(debug=True)
