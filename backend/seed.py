from datetime import date, timedelta

from models import db, User, Subject, WeekConfig
from regeneration import regenerate_schedule
from storage import PlannerStore

DEMO_EMAIL = "student@example.com"

DEMO_SUBJECTS = [
    {"name": "Mathematics", "difficulty": 5, "exam_in_days": 7, "target_hours": 20},
    {"name": "DBMS", "difficulty": 3, "exam_in_days": 21, "target_hours": 12},
    {"name": "Operating Systems", "difficulty": 4, "exam_in_days": 14, "target_hours": 15},
    {"name": "Python", "difficulty": 2, "exam_in_days": 30, "target_hours": 8},
]

DEMO_FREE_TIME = [
    {"day": "Monday", "start_time": "09:00", "end_time": "12:00"},
    {"day": "Tuesday", "start_time": "14:00", "end_time": "17:00"},
    {"day": "Wednesday", "start_time": "09:00", "end_time": "11:00"},
    {"day": "Thursday", "start_time": "18:00", "end_time": "21:00"},
    {"day": "Saturday", "start_time": "10:00", "end_time": "14:00"},
]


def seed_demo(app):
    """Insert a demo user with subjects and availability, then build its schedule."""
    with app.app_context():
        db.create_all()

        existing = User.query.filter_by(email=DEMO_EMAIL).first()
        if existing:
            app.logger.info("Demo user already exists, skipping.")
            return existing.id

        user = User(name="Test Student", email=DEMO_EMAIL)
        db.session.add(user)
        db.session.commit()

        start = date.today() - timedelta(days=7)
        for s in DEMO_SUBJECTS:
            db.session.add(Subject(
                user_id=user.id,
                name=s["name"],
                difficulty=s["difficulty"],
                start_date=start,
                exam_date=date.today() + timedelta(days=s["exam_in_days"]),
                target_hours=s["target_hours"],
            ))
        db.session.add(WeekConfig(user_id=user.id, total_available_hours=12, free_time_blocks=DEMO_FREE_TIME))
        db.session.commit()

        result = regenerate_schedule(PlannerStore(db.session), user.id, "seed")
        app.logger.info("Seed data inserted: %s", result.message)
        return user.id


if __name__ == "__main__":
    from app import create_app

    seed_demo(create_app())
