"""
Principal extraction from the API Gateway authorizer context.

Claims are only read from requestContext.authorizer (already verified by the
Cognito authorizer), never from request headers.
"""
import json

GROUP_ADMIN = "Admin"
GROUP_SUPER_ADMIN = "SuperAdmin"
GROUP_VIEW_DATA = "ViewData"

UPLOAD_GROUPS = frozenset({GROUP_ADMIN, GROUP_SUPER_ADMIN})
DELETE_GROUPS = frozenset({GROUP_ADMIN, GROUP_SUPER_ADMIN})
LIST_GROUPS = frozenset({GROUP_ADMIN, GROUP_VIEW_DATA, GROUP_SUPER_ADMIN})
BRAND_GROUPS = frozenset({GROUP_ADMIN, GROUP_SUPER_ADMIN})
SUPER_ADMIN_GROUPS = frozenset({GROUP_SUPER_ADMIN})


def _getClaims(event):
    authorizer = (event or {}).get("requestContext", {}).get("authorizer") or {}
    jwt = authorizer.get("jwt") or {}
    # HTTP API JWT authorizer nests claims under jwt; REST Cognito authorizer does not
    return jwt.get("claims") or authorizer.get("claims") or {}


def normalizeGroups(raw):
    """Return the group claim as a frozenset of names.

    Cognito delivers groups as a list, a comma-joined string, or a JSON-ish
    string like "[Admin SuperAdmin]" depending on the authorizer.
    """
    if not raw:
        return frozenset()
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(str(g).strip() for g in raw if str(g).strip())
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return frozenset(str(g).strip() for g in parsed if str(g).strip())
        groups = set()
        for part in raw.replace(",", " ").split():
            g = part.strip().strip("[]\"'")
            if g:
                groups.add(g)
        return frozenset(groups)
    return frozenset({str(raw)})


def getUserInfo(event):
    """Extract the principal (userId, email, groups) from verified claims."""
    claims = _getClaims(event)
    return {
        "userId": str(claims.get("sub") or claims.get("cognito:username") or ""),
        "email": str(claims.get("email") or ""),
        "groups": normalizeGroups(claims.get("cognito:groups")),
    }


def isSuperAdmin(user):
    return GROUP_SUPER_ADMIN in (user or {}).get("groups", ())
