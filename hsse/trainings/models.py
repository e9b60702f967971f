"""
HSSE Trainings - Database Models & Schema

A training moves Draft -> Scheduled -> InProgress -> Completed (or Cancelled).
Participants are enrolled while the training is open, attend once it starts,
and pass or fail on their assessment score. Certificates are issued to every
participant who completed when the training closes.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List, Optional

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, row_to_dict, add_months, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)


class TrainingStatus(str, Enum):
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class TrainingType(str, Enum):
    SAFETY_ORIENTATION = "SafetyOrientation"
    HSE_TRAINING = "HSETraining"
    PERMIT_TO_WORK = "PermitToWork"
    CONFINED_SPACE_ENTRY = "ConfinedSpaceEntry"
    HOT_WORK_SAFETY = "HotWorkSafety"
    ELECTRICAL_SAFETY = "ElectricalSafety"
    FIRE_SAFETY = "FireSafety"
    EMERGENCY_RESPONSE = "EmergencyResponse"
    FIRST_AID = "FirstAid"
    TECHNICAL_SKILLS = "TechnicalSkills"
    OTHER = "Other"


class ParticipantStatus(str, Enum):
    ENROLLED = "Enrolled"
    ATTENDING = "Attending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    WITHDRAWN = "Withdrawn"
    NO_SHOW = "NoShow"


class ValidityPeriod(str, Enum):
    ONE_MONTH = "OneMonth"
    THREE_MONTHS = "ThreeMonths"
    SIX_MONTHS = "SixMonths"
    ONE_YEAR = "OneYear"
    TWO_YEARS = "TwoYears"
    THREE_YEARS = "ThreeYears"
    FIVE_YEARS = "FiveYears"
    INDEFINITE = "Indefinite"


VALIDITY_MONTHS = {
    ValidityPeriod.ONE_MONTH: 1,
    ValidityPeriod.THREE_MONTHS: 3,
    ValidityPeriod.SIX_MONTHS: 6,
    ValidityPeriod.ONE_YEAR: 12,
    ValidityPeriod.TWO_YEARS: 24,
    ValidityPeriod.THREE_YEARS: 36,
    ValidityPeriod.FIVE_YEARS: 60,
    ValidityPeriod.INDEFINITE: None,
}

TYPE_PREFIX = {
    TrainingType.SAFETY_ORIENTATION: "SO",
    TrainingType.HSE_TRAINING: "HSE",
    TrainingType.PERMIT_TO_WORK: "PTW",
    TrainingType.CONFINED_SPACE_ENTRY: "CSE",
    TrainingType.HOT_WORK_SAFETY: "HWS",
    TrainingType.ELECTRICAL_SAFETY: "ES",
    TrainingType.FIRE_SAFETY: "FS",
    TrainingType.TECHNICAL_SKILLS: "TS",
}

EDITABLE_FIELDS = ("title", "description", "training_type", "scheduled_start_date",
                   "scheduled_end_date", "duration_hours", "max_participants", "min_participants",
                   "venue", "online_link", "instructor_name", "passing_score",
                   "issues_certificate", "certificate_validity", "certifying_body")


def certificate_valid_until(validity: str, issued: datetime.date = None) -> Optional[datetime.date]:
    months = VALIDITY_MONTHS[ValidityPeriod(validity)]
    if months is None:
        return None
    return add_months(issued or datetime.date.today(), months)


def init_training_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS trainings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            training_code TEXT UNIQUE NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            training_type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'Draft',
            scheduled_start_date TEXT NOT NULL,
            scheduled_end_date TEXT NOT NULL,
            actual_start_date TEXT,
            actual_end_date TEXT,
            duration_hours INTEGER,
            max_participants INTEGER NOT NULL,
            min_participants INTEGER NOT NULL DEFAULT 1,
            venue TEXT,
            online_link TEXT,
            instructor_name TEXT,
            passing_score REAL NOT NULL DEFAULT 70,
            issues_certificate INTEGER DEFAULT 0,
            certificate_validity TEXT DEFAULT 'OneYear',
            certifying_body TEXT,
            average_rating REAL DEFAULT 0,
            total_ratings INTEGER DEFAULT 0,
            evaluation_summary TEXT,
            cancellation_reason TEXT,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS training_participants (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            training_id INTEGER NOT NULL REFERENCES trainings(id),
            user_id INTEGER NOT NULL REFERENCES users(id),
            user_name TEXT,
            user_department TEXT,
            status TEXT NOT NULL DEFAULT 'Enrolled',
            enrolled_at TEXT,
            enrolled_by TEXT,
            attendance_percentage REAL DEFAULT 0,
            final_score REAL,
            has_passed INTEGER DEFAULT 0,
            assessment_date TEXT,
            completion_notes TEXT,
            completed_at TEXT,
            training_rating REAL,
            training_feedback TEXT,
            UNIQUE (training_id, user_id)
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS training_certifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            training_id INTEGER NOT NULL REFERENCES trainings(id),
            user_id INTEGER NOT NULL REFERENCES users(id),
            user_name TEXT,
            certificate_number TEXT UNIQUE NOT NULL,
            issued_date TEXT NOT NULL,
            valid_until TEXT,
            certifying_body TEXT,
            final_score REAL,
            is_revoked INTEGER DEFAULT 0
        )
    """)
    conn.commit()
    conn.close()


# ================================================================
# TRAININGS
# ================================================================

def _training(row) -> Optional[Dict]:
    d = row_to_dict(row)
    if d:
        d["issues_certificate"] = bool(d["issues_certificate"])
    return d


def get_training(training_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("""
        SELECT t.*, (SELECT COUNT(*) FROM training_participants p WHERE p.training_id = t.id
                     AND p.status NOT IN ('Withdrawn', 'NoShow')) AS enrolled_count
        FROM trainings t WHERE t.id = ?
    """, (training_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Training", training_id)
    return _training(row)


def get_training_detail(training_id: int) -> Dict:
    training = get_training(training_id)
    training["participants"] = list_participants(training_id)
    conn = get_conn()
    training["certifications"] = rows_to_dicts(conn.execute(
        "SELECT * FROM training_certifications WHERE training_id = ? ORDER BY id", (training_id,)).fetchall())
    conn.close()
    return training


def list_trainings(search: str = None, status: str = None, training_type: str = None,
                   user_id: int = None, page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(t.title LIKE ? OR t.training_code LIKE ? OR t.instructor_name LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    if status:
        where.append("t.status = ?")
        params.append(status)
    if training_type:
        where.append("t.training_type = ?")
        params.append(training_type)
    if user_id:
        where.append("EXISTS (SELECT 1 FROM training_participants p WHERE p.training_id = t.id AND p.user_id = ?)")
        params.append(user_id)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM trainings t WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT t.*, (SELECT COUNT(*) FROM training_participants p WHERE p.training_id = t.id
                     AND p.status NOT IN ('Withdrawn', 'NoShow')) AS enrolled_count
        FROM trainings t WHERE {clause}
        ORDER BY t.scheduled_start_date DESC, t.id DESC LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": [_training(r) for r in rows], "total": total, "page": page, "page_size": page_size}


def _validate_training(data: Dict):
    start = parse_date(data.get("scheduled_start_date"))
    end = parse_date(data.get("scheduled_end_date"))
    require(start and end, "Scheduled start and end dates are required")
    if end < start:
        raise DomainError("Scheduled end date must be after the start date")
    max_p, min_p = data.get("max_participants"), data.get("min_participants", 1)
    require(isinstance(max_p, int) and max_p > 0, "Max participants must be greater than 0")
    require(isinstance(min_p, int) and 0 < min_p <= max_p,
            "Min participants must be between 1 and max participants")
    score = data.get("passing_score", 70)
    require(isinstance(score, (int, float)) and 0 <= score <= 100, "Passing score must be between 0 and 100")
    if data.get("certificate_validity") and data["certificate_validity"] not in ValidityPeriod._value2member_map_:
        raise DomainError(f"Invalid certificate validity: {data['certificate_validity']}")


def create_training(data: Dict, user: str) -> Dict:
    require((data.get("title") or "").strip(), "Title is required")
    training_type = data.get("training_type", TrainingType.OTHER.value)
    if training_type not in TrainingType._value2member_map_:
        raise DomainError(f"Invalid training type: {training_type}")
    _validate_training(data)

    conn = get_conn()
    prefix = TYPE_PREFIX.get(TrainingType(training_type), "TRN")
    month = datetime.date.today().strftime("%Y%m")
    seq = conn.execute("SELECT COUNT(*) FROM trainings WHERE training_code LIKE ?",
                       (f"{prefix}-{month}-%",)).fetchone()[0] + 1
    cur = conn.execute("""
        INSERT INTO trainings
        (training_code, title, description, training_type, status, scheduled_start_date,
         scheduled_end_date, duration_hours, max_participants, min_participants, venue, online_link,
         instructor_name, passing_score, issues_certificate, certificate_validity, certifying_body,
         created_at, created_by)
        VALUES (?, ?, ?, ?, 'Draft', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (f"{prefix}-{month}-{seq:04d}", data["title"].strip(), data.get("description"), training_type,
          data["scheduled_start_date"], data["scheduled_end_date"], data.get("duration_hours"),
          data["max_participants"], data.get("min_participants", 1), data.get("venue"),
          data.get("online_link"), data.get("instructor_name"), data.get("passing_score", 70),
          1 if data.get("issues_certificate") else 0,
          data.get("certificate_validity", ValidityPeriod.ONE_YEAR.value), data.get("certifying_body"),
          ts(), user))
    training_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "Created", user=user)
    return get_training(training_id)


def update_training(training_id: int, data: Dict, user: str) -> Dict:
    training = get_training(training_id)
    if training["status"] in (TrainingStatus.IN_PROGRESS.value, TrainingStatus.COMPLETED.value):
        raise DomainError("Cannot update training details while in progress or completed")
    merged = {**training, **{k: data[k] for k in EDITABLE_FIELDS if k in data}}
    _validate_training(merged)
    fields = {k: data[k] for k in EDITABLE_FIELDS if k in data}
    require(fields, "No fields to update")
    if "issues_certificate" in fields:
        fields["issues_certificate"] = 1 if fields["issues_certificate"] else 0
    _set_training(training_id, fields, user)
    log_activity("Training", training_id, "Updated", user=user, details=data)
    return get_training(training_id)


def _set_training(training_id: int, fields: Dict, user: str, conn=None):
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    params = list(fields.values()) + [ts(), user, training_id]
    own = conn is None
    conn = conn or get_conn()
    conn.execute(f"UPDATE trainings SET {', '.join(sets)} WHERE id = ?", params)
    if own:
        conn.commit()
        conn.close()


def schedule_training(training_id: int, user: str) -> Dict:
    training = get_training(training_id)
    if training["status"] != TrainingStatus.DRAFT.value:
        raise DomainError("Only draft trainings can be scheduled")
    if training["enrolled_count"] < training["min_participants"]:
        raise DomainError(f"Cannot schedule training with less than {training['min_participants']} participants")
    _set_training(training_id, {"status": TrainingStatus.SCHEDULED.value}, user)
    log_activity("Training", training_id, "Scheduled", user=user)
    return get_training(training_id)


def start_training(training_id: int, user: str) -> Dict:
    training = get_training(training_id)
    if training["status"] != TrainingStatus.SCHEDULED.value:
        raise DomainError("Only scheduled trainings can be started")
    conn = get_conn()
    _set_training(training_id, {"status": TrainingStatus.IN_PROGRESS.value, "actual_start_date": ts()}, user, conn)
    conn.execute("UPDATE training_participants SET status = 'Attending' WHERE training_id = ? AND status = 'Enrolled'",
                 (training_id,))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "Started", user=user)
    return get_training(training_id)


def complete_training(training_id: int, evaluation_summary: str, user: str) -> Dict:
    training = get_training(training_id)
    if training["status"] != TrainingStatus.IN_PROGRESS.value:
        raise DomainError("Only in-progress trainings can be completed")
    conn = get_conn()
    _set_training(training_id, {"status": TrainingStatus.COMPLETED.value, "actual_end_date": ts(),
                                "evaluation_summary": evaluation_summary}, user, conn)
    issued = 0
    if training["issues_certificate"]:
        completed = conn.execute("""
            SELECT * FROM training_participants WHERE training_id = ? AND status = 'Completed'
        """, (training_id,)).fetchall()
        valid_until = certificate_valid_until(training["certificate_validity"] or ValidityPeriod.ONE_YEAR.value)
        year = datetime.date.today().year
        for p in completed:
            seq = conn.execute("SELECT COUNT(*) FROM training_certifications WHERE certificate_number LIKE ?",
                               (f"CERT-{year}-%",)).fetchone()[0] + 1
            conn.execute("""
                INSERT INTO training_certifications
                (training_id, user_id, user_name, certificate_number, issued_date, valid_until,
                 certifying_body, final_score)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (training_id, p["user_id"], p["user_name"], f"CERT-{year}-{seq:05d}", today(),
                  valid_until.isoformat() if valid_until else None, training["certifying_body"],
                  p["final_score"]))
            issued += 1
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "Completed", user=user, details={"certificates_issued": issued})
    logger.info("[Trainings] %s completed, %d certificates issued", training["training_code"], issued)
    return get_training(training_id)


def cancel_training(training_id: int, reason: str, user: str) -> Dict:
    training = get_training(training_id)
    if training["status"] == TrainingStatus.COMPLETED.value:
        raise DomainError("Completed trainings cannot be cancelled")
    if training["status"] == TrainingStatus.CANCELLED.value:
        raise DomainError("Training is already cancelled")
    conn = get_conn()
    _set_training(training_id, {"status": TrainingStatus.CANCELLED.value, "cancellation_reason": reason},
                  user, conn)
    conn.execute("""
        UPDATE training_participants SET status = 'Withdrawn', completion_notes = 'Withdrawn from training'
        WHERE training_id = ? AND status IN ('Enrolled', 'Attending')
    """, (training_id,))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "Cancelled", user=user, details={"reason": reason})
    return get_training(training_id)


# ================================================================
# PARTICIPANTS
# ================================================================

def list_participants(training_id: int) -> List[Dict]:
    conn = get_conn()
    rows = conn.execute("SELECT * FROM training_participants WHERE training_id = ? ORDER BY id",
                        (training_id,)).fetchall()
    conn.close()
    out = rows_to_dicts(rows)
    for p in out:
        p["has_passed"] = bool(p["has_passed"])
    return out


def get_participant(training_id: int, user_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM training_participants WHERE training_id = ? AND user_id = ?",
                       (training_id, user_id)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Participant", user_id)
    d = dict(row)
    d["has_passed"] = bool(d["has_passed"])
    return d


def enroll_participant(training_id: int, user_id: int, enrolled_by: str) -> Dict:
    training = get_training(training_id)
    if training["status"] in (TrainingStatus.COMPLETED.value, TrainingStatus.CANCELLED.value):
        raise DomainError("Cannot enroll participants in completed or cancelled training")
    if training["enrolled_count"] >= training["max_participants"]:
        raise DomainError("Training has reached maximum participant capacity")
    conn = get_conn()
    user = conn.execute("SELECT id, name, department FROM users WHERE id = ? AND is_active = 1",
                        (user_id,)).fetchone()
    if not user:
        conn.close()
        raise NotFoundError("User", user_id)
    existing = conn.execute("SELECT status FROM training_participants WHERE training_id = ? AND user_id = ?",
                            (training_id, user_id)).fetchone()
    if existing and existing["status"] not in (ParticipantStatus.WITHDRAWN.value, ParticipantStatus.NO_SHOW.value):
        conn.close()
        raise DomainError("Participant is already enrolled in this training")
    status = (ParticipantStatus.ATTENDING.value if training["status"] == TrainingStatus.IN_PROGRESS.value
              else ParticipantStatus.ENROLLED.value)
    if existing:
        conn.execute("""
            UPDATE training_participants SET status = ?, enrolled_at = ?, enrolled_by = ?, completion_notes = NULL
            WHERE training_id = ? AND user_id = ?
        """, (status, ts(), enrolled_by, training_id, user_id))
    else:
        conn.execute("""
            INSERT INTO training_participants
            (training_id, user_id, user_name, user_department, status, enrolled_at, enrolled_by)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (training_id, user_id, user["name"], user["department"], status, ts(), enrolled_by))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "ParticipantEnrolled", user=enrolled_by, details={"user_id": user_id})
    return get_participant(training_id, user_id)


def remove_participant(training_id: int, user_id: int, reason: str, user: str):
    participant = get_participant(training_id, user_id)
    if participant["status"] == ParticipantStatus.COMPLETED.value:
        raise DomainError("Cannot remove participants who have completed the training")
    conn = get_conn()
    conn.execute("DELETE FROM training_participants WHERE id = ?", (participant["id"],))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "ParticipantRemoved", user=user,
                 details={"user_id": user_id, "reason": reason})


def record_attendance(training_id: int, user_id: int, percentage, user: str) -> Dict:
    participant = get_participant(training_id, user_id)
    require(isinstance(percentage, (int, float)) and 0 <= percentage <= 100,
            "Attendance percentage must be between 0 and 100")
    conn = get_conn()
    conn.execute("UPDATE training_participants SET attendance_percentage = ? WHERE id = ?",
                 (percentage, participant["id"]))
    conn.commit()
    conn.close()
    return get_participant(training_id, user_id)


def mark_no_show(training_id: int, user_id: int, user: str) -> Dict:
    participant = get_participant(training_id, user_id)
    if participant["status"] not in (ParticipantStatus.ENROLLED.value, ParticipantStatus.ATTENDING.value):
        raise DomainError("Only enrolled participants can be marked as no-show")
    conn = get_conn()
    conn.execute("""
        UPDATE training_participants SET status = 'NoShow', attendance_percentage = 0,
        completion_notes = 'Marked as no-show' WHERE id = ?
    """, (participant["id"],))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "ParticipantNoShow", user=user, details={"user_id": user_id})
    return get_participant(training_id, user_id)


def record_assessment(training_id: int, user_id: int, score, user: str) -> Dict:
    training = get_training(training_id)
    participant = get_participant(training_id, user_id)
    if participant["status"] != ParticipantStatus.ATTENDING.value:
        raise DomainError("Only attending participants can have assessment results recorded")
    if not isinstance(score, (int, float)) or isinstance(score, bool) or not 0 <= score <= 100:
        raise DomainError("Score must be between 0 and 100")
    passing = training["passing_score"]
    passed = score >= passing
    if passed:
        status, notes, completed_at = ParticipantStatus.COMPLETED.value, f"Completed with score: {score:g}%", ts()
    else:
        status, notes, completed_at = (ParticipantStatus.FAILED.value,
                                       f"Failed with score: {score:g}% (Required: {passing:g}%)", None)
    conn = get_conn()
    conn.execute("""
        UPDATE training_participants SET final_score = ?, has_passed = ?, assessment_date = ?,
        status = ?, completion_notes = ?, completed_at = ? WHERE id = ?
    """, (score, 1 if passed else 0, ts(), status, notes, completed_at, participant["id"]))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "AssessmentRecorded", user=user,
                 details={"user_id": user_id, "score": score, "passed": passed})
    return get_participant(training_id, user_id)


def retake_assessment(training_id: int, user_id: int, user: str) -> Dict:
    participant = get_participant(training_id, user_id)
    if participant["status"] != ParticipantStatus.FAILED.value:
        raise DomainError("Only failed participants can retake assessment")
    conn = get_conn()
    conn.execute("""
        UPDATE training_participants SET status = 'Attending', final_score = NULL, has_passed = 0,
        assessment_date = NULL, completion_notes = 'Retaking assessment' WHERE id = ?
    """, (participant["id"],))
    conn.commit()
    conn.close()
    log_activity("Training", training_id, "AssessmentRetake", user=user, details={"user_id": user_id})
    return get_participant(training_id, user_id)


def submit_feedback(training_id: int, user_id: int, rating, feedback: str) -> Dict:
    participant = get_participant(training_id, user_id)
    if participant["status"] != ParticipantStatus.COMPLETED.value:
        raise DomainError("Only completed participants can provide feedback")
    if not isinstance(rating, (int, float)) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise DomainError("Rating must be between 1 and 5")
    conn = get_conn()
    conn.execute("UPDATE training_participants SET training_rating = ?, training_feedback = ? WHERE id = ?",
                 (rating, feedback, participant["id"]))
    agg = conn.execute("""
        SELECT AVG(training_rating) AS avg, COUNT(training_rating) AS n
        FROM training_participants WHERE training_id = ? AND training_rating IS NOT NULL
    """, (training_id,)).fetchone()
    conn.execute("UPDATE trainings SET average_rating = ?, total_ratings = ? WHERE id = ?",
                 (round(agg["avg"] or 0, 2), agg["n"], training_id))
    conn.commit()
    conn.close()
    return get_participant(training_id, user_id)


# ================================================================
# CERTIFICATES & DASHBOARD
# ================================================================

def list_certifications(user_id: int = None, expiring_within_days: int = None) -> List[Dict]:
    where, params = ["c.is_revoked = 0"], []
    if user_id:
        where.append("c.user_id = ?")
        params.append(user_id)
    if expiring_within_days is not None:
        where.append("c.valid_until IS NOT NULL AND c.valid_until BETWEEN ? AND ?")
        params.extend([today(), (datetime.date.today() + datetime.timedelta(days=expiring_within_days)).isoformat()])
    conn = get_conn()
    rows = conn.execute(f"""
        SELECT c.*, t.title AS training_title, t.training_code FROM training_certifications c
        JOIN trainings t ON t.id = c.training_id WHERE {' AND '.join(where)} ORDER BY c.issued_date DESC
    """, params).fetchall()
    conn.close()
    certs = rows_to_dicts(rows)
    now = datetime.date.today()
    for c in certs:
        until = parse_date(c["valid_until"])
        c["is_expired"] = bool(until and until < now)
    return certs


def get_training_dashboard() -> Dict:
    conn = get_conn()
    by_status = {s.value: 0 for s in TrainingStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM trainings GROUP BY status"):
        by_status[r["status"]] = r["n"]
    participants = {s.value: 0 for s in ParticipantStatus}
    for r in conn.execute("SELECT status, COUNT(*) AS n FROM training_participants GROUP BY status"):
        participants[r["status"]] = r["n"]
    certificates = conn.execute("SELECT COUNT(*) FROM training_certifications WHERE is_revoked = 0").fetchone()[0]
    upcoming = rows_to_dicts(conn.execute("""
        SELECT id, training_code, title, scheduled_start_date, status FROM trainings
        WHERE status IN ('Draft', 'Scheduled') AND scheduled_start_date >= ?
        ORDER BY scheduled_start_date LIMIT 10
    """, (today(),)).fetchall())
    avg_rating = conn.execute("SELECT AVG(average_rating) FROM trainings WHERE total_ratings > 0").fetchone()[0]
    conn.close()
    assessed = participants[ParticipantStatus.COMPLETED.value] + participants[ParticipantStatus.FAILED.value]
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "participants": participants,
        "completion_rate": round(participants[ParticipantStatus.COMPLETED.value] / assessed * 100, 1)
        if assessed else 0.0,
        "certificates_issued": certificates,
        "average_rating": round(avg_rating or 0, 2),
        "upcoming": upcoming,
    }
