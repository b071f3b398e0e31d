import azure.functions as func

from crm_shared import error_response, json_response, parse_json_body
from function_app import app
from services.rbac import access_denied_message, check_access, has_any_role, parse_guard
from services.user_roles import (
    bootstrap_admin,
    get_user_role,
    get_user_role_by_id,
    get_users,
    invite_user,
    remove_user,
    set_user_role,
    sync_user,
)
from shared.auth_context import AuthenticationError, actor_for_identity, require_actor, resolve_identity
from shared.db import SessionLocal
from utils.cors import build_cors_headers


@app.function_name(name="CurrentUserRole")
@app.route(route="users/me/role", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def current_user_role(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    db = SessionLocal()
    try:
        actor = actor_for_identity(db, resolve_identity(req))
        return json_response({"role": get_user_role(db, actor)}, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="SyncUser")
@app.route(route="users/sync", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def sync_current_user(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    identity = resolve_identity(req)
    if not identity:
        return error_response(AuthenticationError("Not authenticated"), cors)
    body = parse_json_body(req)
    db = SessionLocal()
    try:
        result = sync_user(
            db,
            identity,
            first_name=body.get("firstName"),
            last_name=body.get("lastName"),
            image_url=body.get("imageUrl"),
        )
        return json_response(result, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="BootstrapAdmin")
@app.route(route="users/bootstrap-admin", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def bootstrap_admin_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        return json_response(bootstrap_admin(db, actor), 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="UsersApi")
@app.route(route="users", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def users_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        return json_response({"users": get_users(db, actor)}, 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="InviteUser")
@app.route(route="users/invite", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def invite_user_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    body = parse_json_body(req)
    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        result = invite_user(
            db,
            actor,
            first_name=body.get("firstName") or "",
            last_name=body.get("lastName") or "",
            email=body.get("email") or "",
            role=body.get("role") or "",
        )
        return json_response(result, 201, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="UserRoleById")
@app.route(route="users/{userId}/role", methods=["GET", "PUT", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def user_role_by_id(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["GET", "PUT", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    user_id = req.route_params.get("userId")
    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        if req.method == "GET":
            return json_response({"userId": user_id, "role": get_user_role_by_id(db, actor, user_id)}, 200, cors)
        body = parse_json_body(req)
        return json_response(set_user_role(db, actor, user_id, body.get("role") or ""), 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="RemoveUser")
@app.route(route="users/{userId}", methods=["DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def remove_user_api(req: func.HttpRequest) -> func.HttpResponse:
    cors = build_cors_headers(req, ["DELETE", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    user_id = req.route_params.get("userId")
    db = SessionLocal()
    try:
        actor = require_actor(db, req)
        return json_response(remove_user(db, actor, user_id), 200, cors)
    except Exception as exc:  # pylint: disable=broad-except
        db.rollback()
        return error_response(exc, cors)
    finally:
        db.close()


@app.function_name(name="AccessCheck")
@app.route(route="access/check", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def access_check(req: func.HttpRequest) -> func.HttpResponse:
    """Evaluate a view guard ({permission?, role?, allowedRoles?}) for the caller."""
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    try:
        permission, required_role, allowed_roles = parse_guard(parse_json_body(req))
    except ValueError as exc:
        return error_response(exc, cors)

    db = SessionLocal()
    try:
        actor = actor_for_identity(db, resolve_identity(req))
        role = get_user_role(db, actor)
        allowed = check_access(role, permission=permission, required_role=required_role)
        if allowed and allowed_roles:
            allowed = has_any_role(role, allowed_roles)
        message = None
        if not allowed:
            fallback_role = required_role or (allowed_roles[0] if allowed_roles else None)
            message = access_denied_message(permission=permission, required_role=fallback_role)
        return json_response(
            {"allowed": allowed, "authenticated": actor is not None, "role": role, "message": message},
            200,
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        return error_response(exc, cors)
    finally:
        db.close()
