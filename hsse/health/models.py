"""
HSSE Health - Database Models & Schema

Health records for students and staff, with medical conditions, vaccinations,
health incidents (clinic visits) and emergency contacts hanging off each record.
"""
import datetime
import logging
from enum import Enum
from typing import Dict, List

from hsse.activity import log_activity
from hsse.db import get_conn, ts, today, rows_to_dicts, parse_date
from hsse.errors import DomainError, NotFoundError, require

logger = logging.getLogger(__name__)

EXPIRING_SOON_DAYS = 30


class PersonType(str, Enum):
    STUDENT = "Student"
    STAFF = "Staff"


class BloodType(str, Enum):
    A_POSITIVE = "APositive"
    A_NEGATIVE = "ANegative"
    B_POSITIVE = "BPositive"
    B_NEGATIVE = "BNegative"
    AB_POSITIVE = "ABPositive"
    AB_NEGATIVE = "ABNegative"
    O_POSITIVE = "OPositive"
    O_NEGATIVE = "ONegative"


class MedicalConditionType(str, Enum):
    ALLERGY = "Allergy"
    CHRONIC_CONDITION = "ChronicCondition"
    MEDICATION_DEPENDENCY = "MedicationDependency"
    DIETARY_RESTRICTION = "DietaryRestriction"
    PHYSICAL_LIMITATION = "PhysicalLimitation"
    MENTAL_HEALTH_CONDITION = "MentalHealthCondition"
    OTHER = "Other"


class ConditionSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class VaccinationStatus(str, Enum):
    ADMINISTERED = "Administered"
    DUE = "Due"
    OVERDUE = "Overdue"
    EXEMPTED = "Exempted"
    SCHEDULED = "Scheduled"


class HealthIncidentType(str, Enum):
    INJURY = "Injury"
    ILLNESS = "Illness"
    ALLERGIC = "Allergic"
    EMERGENCY = "Emergency"
    PREVENTIVE = "Preventive"
    OTHER = "Other"


class HealthIncidentSeverity(str, Enum):
    MINOR = "Minor"
    MODERATE = "Moderate"
    SEVERE = "Severe"
    CRITICAL = "Critical"


RECORD_FIELDS = ("person_name", "person_email", "person_type", "date_of_birth", "blood_type",
                 "medical_notes", "primary_doctor_name", "primary_doctor_contact", "insurance_provider",
                 "insurance_policy_number", "last_health_check_date", "next_health_check_date", "department")
CONDITION_FIELDS = ("condition_type", "name", "description", "severity", "diagnosed_date", "diagnosed_by",
                    "treatment_plan", "medication_required", "emergency_protocol", "requires_emergency_action")
VACCINATION_FIELDS = ("vaccine_name", "vaccine_type", "date_administered", "administered_by", "batch_number",
                      "manufacturer", "dose_number", "total_doses_required", "expiry_date", "next_due_date",
                      "is_required", "side_effects", "status")
CONTACT_FIELDS = ("name", "relationship", "primary_phone", "secondary_phone", "email", "address",
                  "is_primary", "is_authorized_for_pickup", "is_authorized_for_medical_decisions",
                  "notes", "priority")


# ================================================================
# PURE HELPERS
# ================================================================

def is_vaccination_expired(vacc: Dict, on: datetime.date = None) -> bool:
    expiry = parse_date(vacc.get("expiry_date"))
    return bool(expiry and expiry < (on or datetime.date.today()))


def is_vaccination_expiring(vacc: Dict, days: int = EXPIRING_SOON_DAYS, on: datetime.date = None) -> bool:
    on = on or datetime.date.today()
    expiry = parse_date(vacc.get("expiry_date"))
    return bool(expiry and on <= expiry <= on + datetime.timedelta(days=days))


def is_vaccination_compliant(vacc: Dict, on: datetime.date = None) -> bool:
    """Administered and still valid, or formally exempted."""
    if vacc["status"] == VaccinationStatus.EXEMPTED.value:
        return True
    return vacc["status"] == VaccinationStatus.ADMINISTERED.value and not is_vaccination_expired(vacc, on)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 100.0


def summarize_compliance(vaccinations: List[Dict], on: datetime.date = None) -> Dict:
    """
    Compliance over required vaccinations. Each row needs status, expiry_date,
    vaccine_name and person_type.
    """
    required = [v for v in vaccinations if v.get("is_required")]
    compliant = [v for v in required if is_vaccination_compliant(v, on)]

    by_vaccine = {}
    for v in required:
        b = by_vaccine.setdefault(v["vaccine_name"], {"vaccine_name": v["vaccine_name"], "required": 0,
                                                      "compliant": 0, "overdue": 0, "exempted": 0,
                                                      "expired": 0, "expiring": 0})
        b["required"] += 1
        b["compliant"] += 1 if is_vaccination_compliant(v, on) else 0
        b["overdue"] += 1 if v["status"] == VaccinationStatus.OVERDUE.value else 0
        b["exempted"] += 1 if v["status"] == VaccinationStatus.EXEMPTED.value else 0
        b["expired"] += 1 if is_vaccination_expired(v, on) else 0
        b["expiring"] += 1 if is_vaccination_expiring(v, on=on) else 0
    for b in by_vaccine.values():
        b["compliance_rate"] = _rate(b["compliant"], b["required"])

    by_person_type = {}
    for pt in PersonType:
        rows = [v for v in required if v.get("person_type") == pt.value]
        ok = sum(1 for v in rows if is_vaccination_compliant(v, on))
        by_person_type[pt.value] = {"required": len(rows), "compliant": ok,
                                    "compliance_rate": _rate(ok, len(rows))}

    return {
        "total_required": len(required),
        "total_compliant": len(compliant),
        "total_overdue": sum(1 for v in required if v["status"] == VaccinationStatus.OVERDUE.value),
        "total_exempted": sum(1 for v in vaccinations if v["status"] == VaccinationStatus.EXEMPTED.value),
        "expiring_soon": sum(1 for v in required if is_vaccination_expiring(v, on=on)),
        "expired": sum(1 for v in required if is_vaccination_expired(v, on)),
        "compliance_rate": _rate(len(compliant), len(required)),
        "by_vaccine": sorted(by_vaccine.values(), key=lambda b: -b["required"]),
        "by_person_type": by_person_type,
    }


def init_health_schema():
    conn = get_conn()
    c = conn.cursor()
    c.execute("""
        CREATE TABLE IF NOT EXISTS health_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            person_id INTEGER REFERENCES users(id),
            person_name TEXT NOT NULL,
            person_email TEXT,
            person_type TEXT NOT NULL,
            department TEXT,
            date_of_birth TEXT,
            blood_type TEXT,
            medical_notes TEXT,
            primary_doctor_name TEXT,
            primary_doctor_contact TEXT,
            insurance_provider TEXT,
            insurance_policy_number TEXT,
            last_health_check_date TEXT,
            next_health_check_date TEXT,
            is_active INTEGER DEFAULT 1,
            created_at TEXT,
            created_by TEXT,
            updated_at TEXT,
            updated_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS medical_conditions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            health_record_id INTEGER NOT NULL REFERENCES health_records(id),
            condition_type TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            severity TEXT NOT NULL DEFAULT 'Low',
            diagnosed_date TEXT,
            diagnosed_by TEXT,
            treatment_plan TEXT,
            medication_required TEXT,
            emergency_protocol TEXT,
            requires_emergency_action INTEGER DEFAULT 0,
            is_active INTEGER DEFAULT 1,
            created_at TEXT,
            updated_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS vaccinations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            health_record_id INTEGER NOT NULL REFERENCES health_records(id),
            vaccine_name TEXT NOT NULL,
            vaccine_type TEXT,
            date_administered TEXT,
            administered_by TEXT,
            batch_number TEXT,
            manufacturer TEXT,
            dose_number INTEGER,
            total_doses_required INTEGER,
            expiry_date TEXT,
            next_due_date TEXT,
            status TEXT NOT NULL,
            is_required INTEGER DEFAULT 0,
            exemption_reason TEXT,
            side_effects TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS health_incidents (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            health_record_id INTEGER NOT NULL REFERENCES health_records(id),
            incident_type TEXT NOT NULL,
            severity TEXT NOT NULL,
            occurred_at TEXT NOT NULL,
            location TEXT,
            symptoms TEXT,
            vital_signs TEXT,
            treatment_provided TEXT,
            medication_administered TEXT,
            follow_up_required INTEGER DEFAULT 0,
            follow_up_notes TEXT,
            treated_by TEXT,
            referred_to TEXT,
            parent_notified INTEGER DEFAULT 0,
            is_resolved INTEGER DEFAULT 0,
            created_at TEXT,
            created_by TEXT
        )
    """)
    c.execute("""
        CREATE TABLE IF NOT EXISTS emergency_contacts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            health_record_id INTEGER NOT NULL REFERENCES health_records(id),
            name TEXT NOT NULL,
            relationship TEXT NOT NULL,
            primary_phone TEXT NOT NULL,
            secondary_phone TEXT,
            email TEXT,
            address TEXT,
            is_primary INTEGER DEFAULT 0,
            is_authorized_for_pickup INTEGER DEFAULT 0,
            is_authorized_for_medical_decisions INTEGER DEFAULT 0,
            notes TEXT,
            priority INTEGER DEFAULT 1,
            is_active INTEGER DEFAULT 1,
            created_at TEXT,
            updated_at TEXT
        )
    """)
    conn.commit()
    conn.close()


def _check_enum(enum_cls, value, label: str):
    if value not in enum_cls._value2member_map_:
        raise DomainError(f"Invalid {label}: {value}")


def _bools(d: Dict, keys) -> Dict:
    for k in keys:
        if k in d and d[k] is not None:
            d[k] = bool(d[k])
    return d


# ================================================================
# HEALTH RECORDS
# ================================================================

def get_health_record(record_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM health_records WHERE id = ?", (record_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Health record", record_id)
    return _bools(dict(row), ("is_active",))


def get_health_record_detail(record_id: int) -> Dict:
    record = get_health_record(record_id)
    conn = get_conn()
    record["medical_conditions"] = [_bools(dict(r), ("requires_emergency_action", "is_active")) for r in conn.execute(
        "SELECT * FROM medical_conditions WHERE health_record_id = ? AND is_active = 1 ORDER BY id", (record_id,))]
    record["vaccinations"] = [_decorate_vaccination(dict(r)) for r in conn.execute(
        "SELECT * FROM vaccinations WHERE health_record_id = ? ORDER BY vaccine_name, id", (record_id,))]
    record["health_incidents"] = [_bools(dict(r), ("follow_up_required", "parent_notified", "is_resolved"))
                                  for r in conn.execute(
        "SELECT * FROM health_incidents WHERE health_record_id = ? ORDER BY occurred_at DESC", (record_id,))]
    record["emergency_contacts"] = list_emergency_contacts(record_id, conn)
    conn.close()
    record["has_critical_conditions"] = any(c["severity"] == ConditionSeverity.CRITICAL.value
                                            for c in record["medical_conditions"])
    return record


def list_health_records(search: str = None, person_type: str = None, active: bool = True,
                        page: int = 1, page_size: int = 20) -> Dict:
    where, params = ["1 = 1"], []
    if search:
        where.append("(person_name LIKE ? OR person_email LIKE ? OR department LIKE ?)")
        s = f"%{search}%"
        params.extend([s, s, s])
    if person_type:
        where.append("person_type = ?")
        params.append(person_type)
    if active is not None:
        where.append("is_active = ?")
        params.append(1 if active else 0)
    page, page_size = max(1, page), max(1, min(page_size, 200))
    clause = " AND ".join(where)
    conn = get_conn()
    total = conn.execute(f"SELECT COUNT(*) FROM health_records WHERE {clause}", params).fetchone()[0]
    rows = conn.execute(f"""
        SELECT h.*,
               (SELECT COUNT(*) FROM medical_conditions m
                WHERE m.health_record_id = h.id AND m.is_active = 1) AS condition_count,
               (SELECT COUNT(*) FROM medical_conditions m
                WHERE m.health_record_id = h.id AND m.is_active = 1 AND m.severity = 'Critical') AS critical_count,
               (SELECT COUNT(*) FROM emergency_contacts e
                WHERE e.health_record_id = h.id AND e.is_active = 1) AS contact_count
        FROM health_records h WHERE {clause} ORDER BY person_name LIMIT ? OFFSET ?
    """, params + [page_size, (page - 1) * page_size]).fetchall()
    conn.close()
    return {"items": [_bools(dict(r), ("is_active",)) for r in rows], "total": total,
            "page": page, "page_size": page_size}


def get_record_for_person(person_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT id FROM health_records WHERE person_id = ? AND is_active = 1",
                       (person_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Health record for user", person_id)
    return get_health_record_detail(row["id"])


def _validate_record(data: Dict):
    if "person_type" in data:
        _check_enum(PersonType, data["person_type"], "person type")
    if data.get("blood_type"):
        _check_enum(BloodType, data["blood_type"], "blood type")
    dob = parse_date(data.get("date_of_birth"))
    if dob and dob > datetime.date.today():
        raise DomainError("Date of birth cannot be in the future")


def create_health_record(data: Dict, user: str) -> Dict:
    require((data.get("person_name") or "").strip(), "Person name is required")
    data.setdefault("person_type", PersonType.STAFF.value)
    _validate_record(data)
    conn = get_conn()
    person_id = data.get("person_id")
    if person_id:
        person = conn.execute("SELECT id, name, email, department FROM users WHERE id = ?",
                              (person_id,)).fetchone()
        if not person:
            conn.close()
            raise NotFoundError("User", person_id)
        if conn.execute("SELECT 1 FROM health_records WHERE person_id = ? AND is_active = 1",
                        (person_id,)).fetchone():
            conn.close()
            raise DomainError("An active health record already exists for this person")
        data.setdefault("person_email", person["email"])
        data.setdefault("department", person["department"])
    cols = [k for k in RECORD_FIELDS if data.get(k) is not None]
    placeholders = ", ".join("?" for _ in cols)
    cur = conn.execute(f"""
        INSERT INTO health_records (person_id, {', '.join(cols)}, is_active, created_at, created_by)
        VALUES (?, {placeholders}, 1, ?, ?)
    """, [person_id] + [data[k] if k != "person_name" else data[k].strip() for k in cols] + [ts(), user])
    record_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("HealthRecord", record_id, "Created", user=user, summary=data["person_name"])
    return get_health_record_detail(record_id)


def update_health_record(record_id: int, data: Dict, user: str) -> Dict:
    record = get_health_record(record_id)
    if not record["is_active"]:
        raise DomainError("Inactive health records cannot be edited")
    fields = {k: data[k] for k in RECORD_FIELDS if k in data}
    require(fields, "No fields to update")
    _validate_record(fields)
    sets = [f"{k} = ?" for k in fields] + ["updated_at = ?", "updated_by = ?"]
    conn = get_conn()
    conn.execute(f"UPDATE health_records SET {', '.join(sets)} WHERE id = ?",
                 list(fields.values()) + [ts(), user, record_id])
    conn.commit()
    conn.close()
    log_activity("HealthRecord", record_id, "Updated", user=user, details=list(fields))
    return get_health_record_detail(record_id)


def deactivate_health_record(record_id: int, user: str):
    get_health_record(record_id)
    conn = get_conn()
    conn.execute("UPDATE health_records SET is_active = 0, updated_at = ?, updated_by = ? WHERE id = ?",
                 (ts(), user, record_id))
    conn.commit()
    conn.close()
    log_activity("HealthRecord", record_id, "Deactivated", user=user)


# ================================================================
# MEDICAL CONDITIONS
# ================================================================

def _condition_values(data: Dict) -> Dict:
    fields = {k: data[k] for k in CONDITION_FIELDS if k in data}
    if "condition_type" in fields:
        _check_enum(MedicalConditionType, fields["condition_type"], "condition type")
    if "severity" in fields:
        _check_enum(ConditionSeverity, fields["severity"], "severity")
    if "requires_emergency_action" in fields:
        fields["requires_emergency_action"] = 1 if fields["requires_emergency_action"] else 0
    return fields


def add_medical_condition(record_id: int, data: Dict, user: str) -> Dict:
    get_health_record(record_id)
    require((data.get("name") or "").strip(), "Condition name is required")
    data.setdefault("condition_type", MedicalConditionType.OTHER.value)
    fields = _condition_values(data)
    conn = get_conn()
    cur = conn.execute(f"""
        INSERT INTO medical_conditions (health_record_id, {', '.join(fields)}, created_at)
        VALUES (?, {', '.join('?' for _ in fields)}, ?)
    """, [record_id] + list(fields.values()) + [ts()])
    conn.commit()
    row = conn.execute("SELECT * FROM medical_conditions WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    log_activity("HealthRecord", record_id, "ConditionAdded", user=user, summary=data["name"])
    return _bools(dict(row), ("requires_emergency_action", "is_active"))


def _get_condition(condition_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM medical_conditions WHERE id = ? AND is_active = 1",
                       (condition_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Medical condition", condition_id)
    return dict(row)


def update_medical_condition(condition_id: int, data: Dict, user: str) -> Dict:
    cond = _get_condition(condition_id)
    fields = _condition_values(data)
    require(fields, "No fields to update")
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn = get_conn()
    conn.execute(f"UPDATE medical_conditions SET {sets}, updated_at = ? WHERE id = ?",
                 list(fields.values()) + [ts(), condition_id])
    conn.commit()
    conn.close()
    log_activity("HealthRecord", cond["health_record_id"], "ConditionUpdated", user=user,
                 details={"condition_id": condition_id})
    return _bools(_get_condition(condition_id), ("requires_emergency_action", "is_active"))


def remove_medical_condition(condition_id: int, user: str):
    cond = _get_condition(condition_id)
    conn = get_conn()
    conn.execute("UPDATE medical_conditions SET is_active = 0, updated_at = ? WHERE id = ?", (ts(), condition_id))
    conn.commit()
    conn.close()
    log_activity("HealthRecord", cond["health_record_id"], "ConditionRemoved", user=user,
                 details={"condition_id": condition_id})


# ================================================================
# VACCINATIONS
# ================================================================

def _decorate_vaccination(v: Dict) -> Dict:
    v["is_required"] = bool(v["is_required"])
    v["is_expired"] = is_vaccination_expired(v)
    v["is_expiring_soon"] = is_vaccination_expiring(v)
    v["is_compliant"] = is_vaccination_compliant(v)
    return v


def _vaccination_values(data: Dict) -> Dict:
    fields = {k: data[k] for k in VACCINATION_FIELDS if k in data}
    if "status" in fields:
        _check_enum(VaccinationStatus, fields["status"], "vaccination status")
        if fields["status"] == VaccinationStatus.EXEMPTED.value:
            raise DomainError("Use the exemption endpoint to exempt a vaccination")
    given, expiry = parse_date(fields.get("date_administered")), parse_date(fields.get("expiry_date"))
    if given and given > datetime.date.today():
        raise DomainError("Administration date cannot be in the future")
    if given and expiry and expiry <= given:
        raise DomainError("Expiry date must be after the administration date")
    dose, total = fields.get("dose_number"), fields.get("total_doses_required")
    if dose and total and dose > total:
        raise DomainError("Dose number cannot exceed the total doses required")
    if "is_required" in fields:
        fields["is_required"] = 1 if fields["is_required"] else 0
    return fields


def get_vaccination(vaccination_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM vaccinations WHERE id = ?", (vaccination_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Vaccination", vaccination_id)
    return _decorate_vaccination(dict(row))


def add_vaccination(record_id: int, data: Dict, user: str) -> Dict:
    get_health_record(record_id)
    require((data.get("vaccine_name") or "").strip(), "Vaccine name is required")
    fields = _vaccination_values(data)
    fields.setdefault("status", VaccinationStatus.ADMINISTERED.value if fields.get("date_administered")
                      else VaccinationStatus.SCHEDULED.value)
    conn = get_conn()
    cur = conn.execute(f"""
        INSERT INTO vaccinations (health_record_id, {', '.join(fields)}, created_at)
        VALUES (?, {', '.join('?' for _ in fields)}, ?)
    """, [record_id] + list(fields.values()) + [ts()])
    vaccination_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("HealthRecord", record_id, "VaccinationRecorded", user=user, summary=data["vaccine_name"])
    return get_vaccination(vaccination_id)


def update_vaccination(vaccination_id: int, data: Dict, user: str) -> Dict:
    vacc = get_vaccination(vaccination_id)
    fields = _vaccination_values({**{k: vacc[k] for k in ("date_administered", "expiry_date")}, **data})
    fields = {k: v for k, v in fields.items() if k in data}
    require(fields, "No fields to update")
    if fields.get("date_administered") and "status" not in fields:
        fields["status"] = VaccinationStatus.ADMINISTERED.value
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn = get_conn()
    conn.execute(f"UPDATE vaccinations SET {sets}, updated_at = ? WHERE id = ?",
                 list(fields.values()) + [ts(), vaccination_id])
    conn.commit()
    conn.close()
    log_activity("HealthRecord", vacc["health_record_id"], "VaccinationUpdated", user=user,
                 details={"vaccination_id": vaccination_id})
    return get_vaccination(vaccination_id)


def record_exemption(vaccination_id: int, reason: str, user: str) -> Dict:
    vacc = get_vaccination(vaccination_id)
    require((reason or "").strip(), "An exemption reason is required")
    if vacc["status"] == VaccinationStatus.ADMINISTERED.value and not vacc["is_expired"]:
        raise DomainError("A valid administered vaccination cannot be exempted")
    conn = get_conn()
    conn.execute("UPDATE vaccinations SET status = 'Exempted', exemption_reason = ?, updated_at = ? WHERE id = ?",
                 (reason.strip(), ts(), vaccination_id))
    conn.commit()
    conn.close()
    log_activity("HealthRecord", vacc["health_record_id"], "VaccinationExempted", user=user,
                 details={"vaccination_id": vaccination_id, "reason": reason})
    return get_vaccination(vaccination_id)


def expire_vaccinations() -> int:
    """Flag lapsed and missed vaccinations as Overdue."""
    conn = get_conn()
    cur = conn.execute("""
        UPDATE vaccinations SET status = 'Overdue', updated_at = ?
        WHERE (status = 'Administered' AND expiry_date IS NOT NULL AND expiry_date < ?)
           OR (status IN ('Scheduled', 'Due') AND next_due_date IS NOT NULL AND next_due_date < ?)
    """, (ts(), today(), today()))
    conn.commit()
    conn.close()
    if cur.rowcount:
        logger.info("[Health] %d vaccinations marked overdue", cur.rowcount)
    return cur.rowcount


def _all_vaccinations(conn, person_type: str = None) -> List[Dict]:
    sql = """
        SELECT v.*, h.person_type, h.person_name FROM vaccinations v
        JOIN health_records h ON h.id = v.health_record_id WHERE h.is_active = 1
    """
    params = []
    if person_type:
        sql += " AND h.person_type = ?"
        params.append(person_type)
    return rows_to_dicts(conn.execute(sql, params).fetchall())


def get_vaccination_compliance(person_type: str = None) -> Dict:
    if person_type:
        _check_enum(PersonType, person_type, "person type")
    conn = get_conn()
    rows = _all_vaccinations(conn, person_type)
    conn.close()
    return summarize_compliance(rows)


# ================================================================
# HEALTH INCIDENTS
# ================================================================

def add_health_incident(record_id: int, data: Dict, user: str) -> Dict:
    record = get_health_record(record_id)
    incident_type = data.get("incident_type", HealthIncidentType.OTHER.value)
    severity = data.get("severity", HealthIncidentSeverity.MINOR.value)
    _check_enum(HealthIncidentType, incident_type, "incident type")
    _check_enum(HealthIncidentSeverity, severity, "severity")
    occurred = data.get("occurred_at") or ts()
    if parse_date(occurred) > datetime.date.today():
        raise DomainError("Incident date cannot be in the future")
    conn = get_conn()
    cur = conn.execute("""
        INSERT INTO health_incidents
        (health_record_id, incident_type, severity, occurred_at, location, symptoms, vital_signs,
         treatment_provided, medication_administered, follow_up_required, follow_up_notes, treated_by,
         referred_to, parent_notified, created_at, created_by)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, (record_id, incident_type, severity, occurred, data.get("location"), data.get("symptoms"),
          data.get("vital_signs"), data.get("treatment_provided"), data.get("medication_administered"),
          1 if data.get("follow_up_required") else 0, data.get("follow_up_notes"), data.get("treated_by"),
          data.get("referred_to"), 1 if data.get("parent_notified") else 0, ts(), user))
    conn.commit()
    row = conn.execute("SELECT * FROM health_incidents WHERE id = ?", (cur.lastrowid,)).fetchone()
    conn.close()
    log_activity("HealthRecord", record_id, "HealthIncidentRecorded", user=user,
                 summary=f"{incident_type} ({severity})")
    result = _bools(dict(row), ("follow_up_required", "parent_notified", "is_resolved"))
    result["person_name"] = record["person_name"]
    return result


def resolve_health_incident(incident_id: int, notes: str, user: str) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM health_incidents WHERE id = ?", (incident_id,)).fetchone()
    if not row:
        conn.close()
        raise NotFoundError("Health incident", incident_id)
    if row["is_resolved"]:
        conn.close()
        raise DomainError("Health incident is already resolved")
    conn.execute("UPDATE health_incidents SET is_resolved = 1, follow_up_notes = COALESCE(?, follow_up_notes) "
                 "WHERE id = ?", (notes, incident_id))
    conn.commit()
    row = conn.execute("SELECT * FROM health_incidents WHERE id = ?", (incident_id,)).fetchone()
    conn.close()
    log_activity("HealthRecord", row["health_record_id"], "HealthIncidentResolved", user=user,
                 details={"incident_id": incident_id})
    return _bools(dict(row), ("follow_up_required", "parent_notified", "is_resolved"))


def list_health_incidents(severity: str = None, incident_type: str = None, limit: int = 100) -> List[Dict]:
    sql = """
        SELECT i.*, h.person_name, h.person_type FROM health_incidents i
        JOIN health_records h ON h.id = i.health_record_id WHERE 1 = 1
    """
    params = []
    if severity:
        sql += " AND i.severity = ?"
        params.append(severity)
    if incident_type:
        sql += " AND i.incident_type = ?"
        params.append(incident_type)
    sql += " ORDER BY i.occurred_at DESC LIMIT ?"
    conn = get_conn()
    rows = conn.execute(sql, params + [limit]).fetchall()
    conn.close()
    return [_bools(dict(r), ("follow_up_required", "parent_notified", "is_resolved")) for r in rows]


# ================================================================
# EMERGENCY CONTACTS
# ================================================================

def list_emergency_contacts(record_id: int, conn=None) -> List[Dict]:
    own = conn is None
    conn = conn or get_conn()
    rows = conn.execute("""
        SELECT * FROM emergency_contacts WHERE health_record_id = ? AND is_active = 1
        ORDER BY is_primary DESC, priority, id
    """, (record_id,)).fetchall()
    if own:
        conn.close()
    keys = ("is_primary", "is_authorized_for_pickup", "is_authorized_for_medical_decisions", "is_active")
    return [_bools(dict(r), keys) for r in rows]


def _get_contact(contact_id: int) -> Dict:
    conn = get_conn()
    row = conn.execute("SELECT * FROM emergency_contacts WHERE id = ? AND is_active = 1", (contact_id,)).fetchone()
    conn.close()
    if not row:
        raise NotFoundError("Emergency contact", contact_id)
    return dict(row)


def _contact_values(data: Dict) -> Dict:
    fields = {k: data[k] for k in CONTACT_FIELDS if k in data}
    for k in ("is_primary", "is_authorized_for_pickup", "is_authorized_for_medical_decisions"):
        if k in fields:
            fields[k] = 1 if fields[k] else 0
    if "priority" in fields and (not isinstance(fields["priority"], int) or fields["priority"] < 1):
        raise DomainError("Priority must be a positive whole number")
    return fields


def add_emergency_contact(record_id: int, data: Dict, user: str) -> Dict:
    get_health_record(record_id)
    for key, label in (("name", "Name"), ("relationship", "Relationship"), ("primary_phone", "Primary phone")):
        require((data.get(key) or "").strip(), f"{label} is required")
    fields = _contact_values(data)
    conn = get_conn()
    existing = conn.execute("SELECT COUNT(*) FROM emergency_contacts WHERE health_record_id = ? AND is_active = 1",
                            (record_id,)).fetchone()[0]
    # The first contact is always primary
    if not existing:
        fields["is_primary"] = 1
    if fields.get("is_primary"):
        conn.execute("UPDATE emergency_contacts SET is_primary = 0 WHERE health_record_id = ?", (record_id,))
    cur = conn.execute(f"""
        INSERT INTO emergency_contacts (health_record_id, {', '.join(fields)}, created_at)
        VALUES (?, {', '.join('?' for _ in fields)}, ?)
    """, [record_id] + list(fields.values()) + [ts()])
    contact_id = cur.lastrowid
    conn.commit()
    conn.close()
    log_activity("HealthRecord", record_id, "EmergencyContactAdded", user=user, summary=data["name"])
    return next(c for c in list_emergency_contacts(record_id) if c["id"] == contact_id)


def update_emergency_contact(contact_id: int, data: Dict, user: str) -> Dict:
    contact = _get_contact(contact_id)
    fields = _contact_values(data)
    require(fields, "No fields to update")
    conn = get_conn()
    if fields.get("is_primary"):
        conn.execute("UPDATE emergency_contacts SET is_primary = 0 WHERE health_record_id = ?",
                     (contact["health_record_id"],))
    sets = ", ".join(f"{k} = ?" for k in fields)
    conn.execute(f"UPDATE emergency_contacts SET {sets}, updated_at = ? WHERE id = ?",
                 list(fields.values()) + [ts(), contact_id])
    conn.commit()
    conn.close()
    log_activity("HealthRecord", contact["health_record_id"], "EmergencyContactUpdated", user=user,
                 details={"contact_id": contact_id})
    return next(c for c in list_emergency_contacts(contact["health_record_id"]) if c["id"] == contact_id)


def remove_emergency_contact(contact_id: int, user: str):
    contact = _get_contact(contact_id)
    conn = get_conn()
    conn.execute("UPDATE emergency_contacts SET is_active = 0, is_primary = 0, updated_at = ? WHERE id = ?",
                 (ts(), contact_id))
    if contact["is_primary"]:
        nxt = conn.execute("""
            SELECT id FROM emergency_contacts WHERE health_record_id = ? AND is_active = 1
            ORDER BY priority, id LIMIT 1
        """, (contact["health_record_id"],)).fetchone()
        if nxt:
            conn.execute("UPDATE emergency_contacts SET is_primary = 1 WHERE id = ?", (nxt["id"],))
    conn.commit()
    conn.close()
    log_activity("HealthRecord", contact["health_record_id"], "EmergencyContactRemoved", user=user,
                 details={"contact_id": contact_id})


# ================================================================
# DASHBOARD
# ================================================================

def get_health_dashboard() -> Dict:
    conn = get_conn()
    records = {r["person_type"]: r["n"] for r in conn.execute(
        "SELECT person_type, COUNT(*) AS n FROM health_records WHERE is_active = 1 GROUP BY person_type")}
    total_records = conn.execute("SELECT COUNT(*) FROM health_records").fetchone()[0]
    critical_conditions = conn.execute("""
        SELECT COUNT(*) FROM medical_conditions m JOIN health_records h ON h.id = m.health_record_id
        WHERE m.is_active = 1 AND h.is_active = 1 AND m.severity = 'Critical'
    """).fetchone()[0]
    high_risk = conn.execute("""
        SELECT COUNT(DISTINCT m.health_record_id) FROM medical_conditions m
        JOIN health_records h ON h.id = m.health_record_id
        WHERE m.is_active = 1 AND h.is_active = 1
          AND (m.severity IN ('High', 'Critical') OR m.requires_emergency_action = 1)
    """).fetchone()[0]
    missing_contacts = conn.execute("""
        SELECT COUNT(*) FROM health_records h WHERE h.is_active = 1 AND NOT EXISTS
        (SELECT 1 FROM emergency_contacts e WHERE e.health_record_id = h.id AND e.is_active = 1)
    """).fetchone()[0]
    vaccinations = _all_vaccinations(conn)
    horizon = (datetime.date.today() + datetime.timedelta(days=EXPIRING_SOON_DAYS)).isoformat()
    upcoming = rows_to_dicts(conn.execute("""
        SELECT v.id, v.vaccine_name, v.next_due_date, v.status, h.id AS health_record_id,
               h.person_name, h.person_type
        FROM vaccinations v JOIN health_records h ON h.id = v.health_record_id
        WHERE h.is_active = 1 AND v.next_due_date IS NOT NULL AND v.next_due_date <= ?
          AND v.status != 'Exempted'
        ORDER BY v.next_due_date LIMIT 20
    """, (horizon,)).fetchall())
    trend = {}
    for r in conn.execute("""
        SELECT substr(occurred_at, 1, 7) AS month, incident_type, COUNT(*) AS n FROM health_incidents
        WHERE occurred_at >= ? GROUP BY month, incident_type
    """, ((datetime.date.today() - datetime.timedelta(days=183)).isoformat(),)):
        trend.setdefault(r["month"], {})[r["incident_type"]] = r["n"]
    conn.close()

    for u in upcoming:
        due = parse_date(u["next_due_date"])
        u["days_until_due"] = (due - datetime.date.today()).days
        u["is_overdue"] = u["days_until_due"] < 0
    compliance = summarize_compliance(vaccinations)
    overdue = compliance["total_overdue"]
    if critical_conditions or overdue > 10:
        risk = "High"
    elif high_risk or overdue or missing_contacts:
        risk = "Medium"
    else:
        risk = "Low"
    recommendations = []
    if overdue:
        recommendations.append(f"Follow up on {overdue} overdue vaccinations")
    if missing_contacts:
        recommendations.append(f"Collect emergency contacts for {missing_contacts} records")
    if critical_conditions:
        recommendations.append("Review emergency protocols for critical medical conditions")
    return {
        "total_records": total_records,
        "active_records": sum(records.values()),
        "student_records": records.get(PersonType.STUDENT.value, 0),
        "staff_records": records.get(PersonType.STAFF.value, 0),
        "critical_conditions": critical_conditions,
        "vaccination_compliance": compliance,
        "incident_trends": [{"month": m, "by_type": v, "total": sum(v.values())} for m, v in sorted(trend.items())],
        "recent_incidents": list_health_incidents(limit=10),
        "upcoming_vaccinations": upcoming,
        "risk_summary": {
            "high_risk_individuals": high_risk,
            "critical_conditions": critical_conditions,
            "overdue_vaccinations": overdue,
            "missing_emergency_contacts": missing_contacts,
            "risk_level": risk,
            "recommendations": recommendations,
        },
    }


def get_health_alerts() -> List[Dict]:
    """Open items needing attention, most urgent first."""
    alerts = []
    conn = get_conn()
    for r in conn.execute("""
        SELECT m.id, m.name, m.severity, m.emergency_protocol, h.id AS health_record_id, h.person_name
        FROM medical_conditions m JOIN health_records h ON h.id = m.health_record_id
        WHERE m.is_active = 1 AND h.is_active = 1
          AND (m.severity = 'Critical' OR m.requires_emergency_action = 1)
    """):
        alerts.append({"alert_type": "CriticalCondition", "severity": "Critical",
                       "health_record_id": r["health_record_id"], "person_name": r["person_name"],
                       "message": f"{r['person_name']}: {r['name']} ({r['severity']})",
                       "emergency_protocol": r["emergency_protocol"]})
    vaccinations = _all_vaccinations(conn)
    missing = conn.execute("""
        SELECT h.id, h.person_name FROM health_records h WHERE h.is_active = 1 AND NOT EXISTS
        (SELECT 1 FROM emergency_contacts e WHERE e.health_record_id = h.id AND e.is_active = 1)
    """).fetchall()
    conn.close()

    for v in vaccinations:
        if v["status"] == VaccinationStatus.OVERDUE.value:
            alerts.append({"alert_type": "VaccinationOverdue", "severity": "High",
                           "health_record_id": v["health_record_id"], "person_name": v["person_name"],
                           "message": f"{v['person_name']}: {v['vaccine_name']} is overdue"})
        elif v["status"] == VaccinationStatus.ADMINISTERED.value and is_vaccination_expiring(v):
            alerts.append({"alert_type": "VaccinationExpiring", "severity": "Medium",
                           "health_record_id": v["health_record_id"], "person_name": v["person_name"],
                           "message": f"{v['person_name']}: {v['vaccine_name']} expires {v['expiry_date']}"})
    for r in missing:
        alerts.append({"alert_type": "MissingEmergencyContact", "severity": "Low",
                       "health_record_id": r["id"], "person_name": r["person_name"],
                       "message": f"{r['person_name']} has no emergency contact"})
    rank = {"Critical": 0, "High": 1, "Medium": 2, "Low": 3}
    return sorted(alerts, key=lambda a: rank[a["severity"]])
