"""
portal/workflow/roles.py
------------------------
Role dispatch table: what each role may do and which requisitions it may list.
Resolved once per request with permissions_for(identity).
"""
from dataclasses import dataclass


# Actions
CREATE        = 'create'
SUBMIT        = 'submit'
APPROVE       = 'approve'
REJECT        = 'reject'
RETURN        = 'return'
ADMIN_APPROVE = 'admin_approve'

ACT_ACTIONS = (APPROVE, REJECT, RETURN, ADMIN_APPROVE)

# Views (list scopes)
OWN      = 'own'        # requisitions I raised
ASSIGNED = 'assigned'   # waiting on me right now
ACTED    = 'acted'      # I have acted on at some point
ALL      = 'all'


@dataclass(frozen=True)
class RolePermissions:
    actions: frozenset
    views:   frozenset

    def can(self, action: str) -> bool:
        return action in self.actions

    def can_view(self, scope: str) -> bool:
        return scope in self.views


ROLE_PERMISSIONS = {
    'requester': RolePermissions(
        actions=frozenset({CREATE, SUBMIT}),
        views=frozenset({OWN}),
    ),
    'approver': RolePermissions(
        actions=frozenset({CREATE, SUBMIT, APPROVE, REJECT, RETURN}),
        views=frozenset({OWN, ASSIGNED, ACTED}),
    ),
    'admin': RolePermissions(
        actions=frozenset({CREATE, SUBMIT, APPROVE, REJECT, RETURN, ADMIN_APPROVE}),
        views=frozenset({OWN, ASSIGNED, ACTED, ALL}),
    ),
}

NO_PERMISSIONS = RolePermissions(actions=frozenset(), views=frozenset())


def permissions_for(identity) -> RolePermissions:
    return ROLE_PERMISSIONS.get(identity.role, NO_PERMISSIONS)


def default_scope(identity) -> str:
    """Widest list scope the role has: all > assigned > own."""
    perms = permissions_for(identity)
    for scope in (ALL, ASSIGNED, OWN):
        if perms.can_view(scope):
            return scope
    return OWN
