from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any
import jwt
from bag2go.config import JWT_SECRET

COOKIE_NAME = "b2g_access"

def determine_role(claims: Dict[str, Any] | None) -> str:
    """
    Rôle applicatif à partir des claims du jeton.
    - Sources, dans l'ordre: app_metadata.role (Supabase), user_role, role.
    - Tout ce qui n'est pas 'admin' devient 'user' (le claim 'role' Supabase vaut 'authenticated').
    """
    claims = claims or {}
    app_metadata = claims.get("app_metadata") or {}
    candidates = (
        app_metadata.get("role") if isinstance(app_metadata, dict) else None,
        claims.get("user_role"),
        claims.get("role"),
    )
    for value in candidates:
        if str(value or "").lower() == "admin":
            return "admin"
    return "user"

def decode_token(token: str) -> Dict[str, Any]:
    if not JWT_SECRET:
        raise HTTPException(status_code=401, detail="Authentification non configurée")
    return jwt.decode(token, JWT_SECRET, algorithms=["HS256"], options={"verify_aud": False})

def _token_from_request(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)
    return token or None

def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    try:
        claims = decode_token(token)
    except HTTPException:
        raise
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Jeton invalide")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return {
        "id": str(user_id),
        "email": claims.get("email"),
        "role": determine_role(claims),
        "token": token,
    }

def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user

def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user
