"""
Central constants for the EMS lab management application.
"""
from __future__ import annotations

# Role ladder, lowest to highest. Each role inherits every permission of the roles below it.
ROLE_LEVELS = {
    "guest": 1,
    "instructor": 2,
    "lead_instructor": 3,
    "admin": 4,
    "superadmin": 5,
}

ROLE_LABELS = {
    "superadmin": "Super Admin",
    "admin": "Admin",
    "lead_instructor": "Lead Instructor",
    "instructor": "Instructor",
    "guest": "Guest",
}

PERMISSIONS = {
    "admin.view": "Admin: view shell",
    "medications.view": "Medications: view reference",
    "medications.manage": "Medications: create/edit/retire",
    "cohorts.view": "Cohorts: view",
    "cohorts.manage": "Cohorts: create/edit/archive",
    "students.view": "Students: view",
    "students.manage": "Students: create/edit/delete",
    "students.import": "Students: import rosters",
    "lab_days.view": "Lab Days: view schedule",
    "lab_days.create": "Lab Days: create",
    "lab_days.edit": "Lab Days: edit stations and roles",
    "lab_days.delete": "Lab Days: delete",
    "tasks.use": "Tasks: assign and work tasks",
    "users.manage": "Accounts: manage users",
    "audit.view": "Audit: view trail",
}

# Permissions granted at each level (before inheritance).
_LEVEL_GRANTS = {
    "guest": ("admin.view", "medications.view"),
    "instructor": (
        "lab_days.view",
        "lab_days.create",
        "lab_days.edit",
        "cohorts.view",
        "students.view",
        "tasks.use",
    ),
    "lead_instructor": ("cohorts.manage", "students.manage", "students.import", "lab_days.delete"),
    "admin": ("medications.manage", "users.manage", "audit.view"),
    "superadmin": tuple(PERMISSIONS),
}


def permissions_for_role(role_key: str) -> list[str]:
    level = ROLE_LEVELS.get(role_key, 0)
    keys: set[str] = set()
    for key, lvl in ROLE_LEVELS.items():
        if lvl <= level:
            keys.update(_LEVEL_GRANTS[key])
    return sorted(keys)


PROGRAMS = (
    # (name, display_name, abbreviation)
    ("EMT", "Emergency Medical Technician", "EMT"),
    ("AEMT", "Advanced EMT", "AEMT"),
    ("Paramedic", "Paramedic", "PM"),
)

STUDENT_STATUSES = ("active", "graduated", "withdrawn", "on_hold")
STATION_TYPES = ("scenario", "skill", "documentation", "lecture", "testing")
LAB_DAY_ROLES = ("lab_lead", "roamer", "observer")

TASK_PRIORITIES = ("low", "medium", "high")
TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")
TASK_COMPLETION_MODES = ("single", "any", "all")
