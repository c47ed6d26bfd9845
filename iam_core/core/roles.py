"""Static role definitions, permission vocabulary and default navigation."""

from __future__ import annotations

from dataclasses import dataclass


class Permissions:
    """Permission names in ``resource:action[:scope]`` form."""

    AGENCY_MANAGE = "agency:manage"
    AGENCY_VIEW_BILLING = "agency:view:billing"
    AGENCY_MANAGE_CLIENTS = "agency:manage:clients"
    AGENCY_IMPERSONATE = "agency:impersonate"

    TENANT_MANAGE = "tenant:manage"
    TENANT_VIEW = "tenant:view"

    USERS_MANAGE = "users:manage"
    USERS_VIEW = "users:view"
    USERS_VIEW_ALL = "users:view:all"

    PROGRAMS_MANAGE = "programs:manage"
    PROGRAMS_CREATE = "programs:create"
    PROGRAMS_VIEW = "programs:view"
    PROGRAMS_ENROLL = "programs:enroll"

    MENTORING_MANAGE = "mentoring:manage"
    MENTORING_VIEW_ASSIGNED = "mentoring:view:assigned"
    MENTORING_VIEW_ALL = "mentoring:view:all"

    GOALS_MANAGE = "goals:manage"
    GOALS_VIEW = "goals:view"
    GOALS_VIEW_DIRECT_REPORTS = "goals:view:direct_reports"

    ASSESSMENTS_MANAGE = "assessments:manage"
    ASSESSMENTS_VIEW = "assessments:view"
    ASSESSMENTS_CREATE_FROM_TEMPLATE = "assessments:create:from_template"

    TEMPLATES_MANAGE = "templates:manage"
    TEMPLATES_VIEW = "templates:view"

    SCORECARD_MANAGE = "scorecard:manage"
    SCORECARD_VIEW = "scorecard:view"

    PLANNING_MANAGE = "planning:manage"
    PLANNING_VIEW = "planning:view"

    PEOPLE_MANAGE = "people:manage"
    PEOPLE_VIEW = "people:view"

    ANALYTICS_VIEW = "analytics:view"
    NOTIFICATIONS_VIEW = "notifications:view"
    SETTINGS_VIEW = "settings:view"
    SETTINGS_MANAGE = "settings:manage"
    HELP_VIEW = "help:view"

    @classmethod
    def all(cls) -> tuple[str, ...]:
        """Return every permission name in declaration order."""
        return tuple(
            value
            for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, str)
        )


class RoleLevel:
    """Role hierarchy levels; a higher number means broader access."""

    AGENCY_OWNER = 100
    AGENCY_ADMIN = 90
    TENANT_ADMIN = 70
    FACILITATOR = 50
    MENTOR = 30
    LEARNER = 10


@dataclass(frozen=True)
class RoleDefinition:
    """Code-defined system role."""

    name: str
    slug: str
    level: int
    description: str
    permissions: tuple[str, ...]
    is_agency_role: bool


_P = Permissions

SYSTEM_ROLES: dict[str, RoleDefinition] = {
    role.slug: role
    for role in (
        RoleDefinition(
            name="Agency Owner",
            slug="agency_owner",
            level=RoleLevel.AGENCY_OWNER,
            description="Full access to agency and all client tenants",
            permissions=Permissions.all(),
            is_agency_role=True,
        ),
        RoleDefinition(
            name="Agency Admin",
            slug="agency_admin",
            level=RoleLevel.AGENCY_ADMIN,
            description="Manages agency operations, clients, and templates",
            permissions=(
                _P.AGENCY_VIEW_BILLING,
                _P.AGENCY_MANAGE_CLIENTS,
                _P.AGENCY_IMPERSONATE,
                _P.TEMPLATES_MANAGE,
                _P.TEMPLATES_VIEW,
                _P.TENANT_VIEW,
                _P.USERS_VIEW_ALL,
                _P.PROGRAMS_VIEW,
                _P.MENTORING_VIEW_ALL,
                _P.GOALS_VIEW,
                _P.ASSESSMENTS_VIEW,
                _P.ANALYTICS_VIEW,
                _P.NOTIFICATIONS_VIEW,
                _P.SETTINGS_VIEW,
                _P.HELP_VIEW,
            ),
            is_agency_role=True,
        ),
        RoleDefinition(
            name="Client Admin",
            slug="tenant_admin",
            level=RoleLevel.TENANT_ADMIN,
            description="Full access to client tenant",
            permissions=(
                _P.TENANT_MANAGE,
                _P.TENANT_VIEW,
                _P.USERS_MANAGE,
                _P.USERS_VIEW_ALL,
                _P.PROGRAMS_MANAGE,
                _P.PROGRAMS_CREATE,
                _P.PROGRAMS_VIEW,
                _P.PROGRAMS_ENROLL,
                _P.MENTORING_MANAGE,
                _P.MENTORING_VIEW_ALL,
                _P.GOALS_MANAGE,
                _P.GOALS_VIEW,
                _P.GOALS_VIEW_DIRECT_REPORTS,
                _P.ASSESSMENTS_MANAGE,
                _P.ASSESSMENTS_VIEW,
                _P.ASSESSMENTS_CREATE_FROM_TEMPLATE,
                _P.SCORECARD_MANAGE,
                _P.SCORECARD_VIEW,
                _P.PLANNING_MANAGE,
                _P.PLANNING_VIEW,
                _P.PEOPLE_MANAGE,
                _P.PEOPLE_VIEW,
                _P.ANALYTICS_VIEW,
                _P.NOTIFICATIONS_VIEW,
                _P.SETTINGS_MANAGE,
                _P.HELP_VIEW,
            ),
            is_agency_role=False,
        ),
        RoleDefinition(
            name="Facilitator",
            slug="facilitator",
            level=RoleLevel.FACILITATOR,
            description="Leads and administers programs",
            permissions=(
                _P.TENANT_VIEW,
                _P.USERS_VIEW,
                _P.PROGRAMS_MANAGE,
                _P.PROGRAMS_VIEW,
                _P.PROGRAMS_ENROLL,
                _P.MENTORING_VIEW_ALL,
                _P.GOALS_VIEW,
                _P.GOALS_VIEW_DIRECT_REPORTS,
                _P.ASSESSMENTS_VIEW,
                _P.PEOPLE_VIEW,
                _P.NOTIFICATIONS_VIEW,
                _P.SETTINGS_VIEW,
                _P.HELP_VIEW,
            ),
            is_agency_role=False,
        ),
        RoleDefinition(
            name="Mentor",
            slug="mentor",
            level=RoleLevel.MENTOR,
            description="Guides and supports assigned learners",
            permissions=(
                _P.TENANT_VIEW,
                _P.PROGRAMS_VIEW,
                _P.MENTORING_VIEW_ASSIGNED,
                _P.GOALS_VIEW,
                _P.ASSESSMENTS_VIEW,
                _P.NOTIFICATIONS_VIEW,
                _P.SETTINGS_VIEW,
                _P.HELP_VIEW,
            ),
            is_agency_role=False,
        ),
        RoleDefinition(
            name="Learner",
            slug="learner",
            level=RoleLevel.LEARNER,
            description="Program participant",
            permissions=(
                _P.TENANT_VIEW,
                _P.PROGRAMS_VIEW,
                _P.MENTORING_VIEW_ASSIGNED,
                _P.GOALS_VIEW,
                _P.ASSESSMENTS_VIEW,
                _P.NOTIFICATIONS_VIEW,
                _P.SETTINGS_VIEW,
                _P.HELP_VIEW,
            ),
            is_agency_role=False,
        ),
    )
}

DEFAULT_ROLE_SLUG = "learner"

_TENANT_ADMIN_NAV = (
    "dashboard",
    "scorecard",
    "planning",
    "programs",
    "mentoring",
    "assessments",
    "people",
    "analytics",
    "notifications",
    "help",
    "settings",
)
_AGENCY_NAV = (
    "dashboard",
    "scorecard",
    "planning",
    "programs",
    "program-builder",
    "mentoring",
    "assessments",
    "people",
    "analytics",
    "notifications",
    "help",
    "settings",
    "agency",
)

NAVIGATION_BY_ROLE: dict[str, tuple[str, ...]] = {
    "learner": ("dashboard", "programs", "assessments", "notifications", "help", "settings"),
    "mentor": (
        "dashboard",
        "programs",
        "mentoring",
        "assessments",
        "notifications",
        "help",
        "settings",
    ),
    "facilitator": (
        "dashboard",
        "programs",
        "mentoring",
        "assessments",
        "notifications",
        "help",
        "settings",
    ),
    "tenant_admin": _TENANT_ADMIN_NAV,
    "agency_admin": _AGENCY_NAV,
    "agency_owner": _AGENCY_NAV,
}

# Items a tenant administrator may place in an override.
NAV_ITEMS: tuple[str, ...] = (
    "dashboard",
    "programs",
    "mentoring",
    "assessments",
    "scorecard",
    "planning",
    "people",
    "analytics",
    "notifications",
    "help",
    "settings",
)

CONFIGURABLE_ROLES: tuple[str, ...] = ("learner", "mentor", "facilitator", "tenant_admin")


def get_role(slug: str) -> RoleDefinition | None:
    """Return the static role definition for a slug, if any."""
    return SYSTEM_ROLES.get(slug)


def navigation_for_role(role_slug: str) -> list[str]:
    """Default navigation for a role; unknown roles fall back to learner."""
    return list(NAVIGATION_BY_ROLE.get(role_slug, NAVIGATION_BY_ROLE[DEFAULT_ROLE_SLUG]))


def has_minimum_role_level(user_level: int, required_level: int) -> bool:
    return user_level >= required_level


def filter_nav_items(items: list[str]) -> list[str]:
    """Keep known navigation items once each, preserving first-seen order."""
    allowed = set(NAV_ITEMS)
    return list(dict.fromkeys(item for item in items if item in allowed))
