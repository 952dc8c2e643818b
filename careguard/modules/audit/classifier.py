"""Request → ActionKind classification.

The table is static. When several rules match a request the most specific one
wins: the greatest total fragment length, then a method-restricted rule over a
method-agnostic one. Anything unmatched is OTHER.
"""
from dataclasses import dataclass
from careguard.core.config import settings
from careguard.modules.audit.models import ActionKind

@dataclass(frozen=True)
class ClassificationRule:
    fragments: tuple[str, ...]
    kind: ActionKind
    methods: frozenset[str] | None = None

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method not in self.methods:
            return False
        return all(f in path for f in self.fragments)

    @property
    def specificity(self) -> tuple[int, int]:
        return sum(len(f) for f in self.fragments), int(self.methods is not None)

def _m(*methods: str) -> frozenset[str]:
    return frozenset(methods)

RULES: tuple[ClassificationRule, ...] = (
    # auth
    ClassificationRule(("/auth/login",), ActionKind.LOGIN),
    ClassificationRule(("/auth/logout",), ActionKind.LOGOUT),
    ClassificationRule(("/auth/register",), ActionKind.REGISTER),
    ClassificationRule(("/auth/profile",), ActionKind.VIEW_PROFILE),
    # assistant
    ClassificationRule(("/chat",), ActionKind.CHAT_AI),
    # doctor
    ClassificationRule(("/doctor/patients",), ActionKind.VIEW_PATIENTS, _m("GET")),
    ClassificationRule(("/doctor/patients", "/records"), ActionKind.VIEW_RECORD),
    ClassificationRule(("/doctor/add-record",), ActionKind.ADD_RECORD),
    ClassificationRule(("/doctor/record/",), ActionKind.VIEW_RECORD, _m("GET")),
    ClassificationRule(("/doctor/all-records",), ActionKind.VIEW_RECORD, _m("GET")),
    ClassificationRule(("/doctor/update-record/",), ActionKind.UPDATE_RECORD),
    ClassificationRule(("/doctor/delete-record/",), ActionKind.DELETE_RECORD),
    # patient self-service
    ClassificationRule(("/patients/my-records",), ActionKind.VIEW_RECORD),
    ClassificationRule(("/patients/my-appointments",), ActionKind.VIEW_APPOINTMENTS),
    # nurse
    ClassificationRule(("/nurse/patients",), ActionKind.VIEW_PATIENTS),
    ClassificationRule(("/nurse/medications",), ActionKind.VIEW_MEDICATIONS, _m("GET")),
    ClassificationRule(("/nurse/medications",), ActionKind.ADD_MEDICATION, _m("POST")),
    ClassificationRule(("/nurse/medications", "/administer"), ActionKind.ADMINISTER_MEDICATION),
    # admin
    ClassificationRule(("/admin/users",), ActionKind.VIEW_USERS, _m("GET")),
    ClassificationRule(("/admin/users", "/role"), ActionKind.ROLE_CHANGE),
    ClassificationRule(("/admin/users",), ActionKind.DELETE_USER, _m("DELETE")),
    # operator surface
    ClassificationRule(("/audit",), ActionKind.VIEW_AUDIT, _m("GET")),
    ClassificationRule(("/audit/alerts", "/resolve"), ActionKind.RESOLVE_ALERT),
)

def classify(method: str, path: str, rules: tuple[ClassificationRule, ...] = RULES) -> ActionKind:
    method = method.upper()
    best: ClassificationRule | None = None
    for rule in rules:
        if rule.matches(method, path) and (best is None or rule.specificity > best.specificity):
            best = rule
    return best.kind if best else ActionKind.OTHER

def is_excluded(path: str, excluded: list[str] | None = None) -> bool:
    for pattern in (settings.AUDIT_EXCLUDED_PATHS if excluded is None else excluded):
        if pattern.endswith("/"):
            if pattern in path:
                return True
        elif path == pattern or path.endswith(pattern):
            return True
    return False
